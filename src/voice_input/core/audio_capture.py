"""
Live microphone capture for Voice Input.

Opens the input device at its native rate and channel count, converts every
block to 16 kHz mono float32 and appends it to the shared RingBuffer.

- The PyAudio callback only enqueues raw bytes
- A processing thread converts blocks and writes the RingBuffer
- Blocks that fail conversion are dropped, never raised
"""

from __future__ import annotations

import logging
import math
import queue
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy.signal import resample_poly

from voice_input.core.errors import EngineStartError
from voice_input.core.ring_buffer import RingBuffer
from voice_input.core.speech_preprocessor import SAMPLE_RATE, SpeechPreprocessor

logger = logging.getLogger(__name__)

# Mathematical constant for 16-bit audio normalization
INT16_MAX_ABS_VALUE = 32768.0
SAMPLE_WIDTH = 2  # 16-bit audio

DEFAULT_CHUNK_SIZE = 2048
DEFAULT_BUFFER_SECONDS = 4.0

# Try to import PyAudio
HAS_PYAUDIO = False
if TYPE_CHECKING:
    import pyaudio
else:
    try:
        import pyaudio

        HAS_PYAUDIO = True
    except ImportError:
        pyaudio = None

# paContinue is 0 in PortAudio; used when a stand-in backend is injected
_PA_CONTINUE = pyaudio.paContinue if HAS_PYAUDIO else 0


class BlockConverter:
    """
    Converts interleaved int16 blocks from the device format to 16 kHz mono float32.

    Each block is converted on its own; no filter state is carried between blocks.
    """

    def __init__(
        self,
        source_rate: int,
        source_channels: int,
        target_rate: int = SAMPLE_RATE,
    ):
        source_rate = int(source_rate)
        source_channels = int(source_channels)
        if source_rate <= 0 or target_rate <= 0:
            raise ValueError(
                f"Invalid sample rate conversion {source_rate} -> {target_rate} Hz"
            )
        if source_channels < 1:
            raise ValueError(f"Invalid channel count: {source_channels}")

        self.source_rate = source_rate
        self.source_channels = source_channels
        self.target_rate = int(target_rate)

        divisor = math.gcd(self.source_rate, self.target_rate)
        self._up = self.target_rate // divisor
        self._down = self.source_rate // divisor

    @property
    def needs_resampling(self) -> bool:
        return self._up != self._down

    def convert(self, raw: bytes) -> np.ndarray:
        """Convert one raw block; raises ValueError on malformed input."""
        pcm = np.frombuffer(raw, dtype=np.int16)
        if pcm.size % self.source_channels:
            raise ValueError(
                f"Block of {pcm.size} samples is not a multiple of "
                f"{self.source_channels} channels"
            )
        if pcm.size == 0:
            return np.zeros(0, dtype=np.float32)

        audio = pcm.astype(np.float32) / INT16_MAX_ABS_VALUE
        if self.source_channels > 1:
            audio = audio.reshape(-1, self.source_channels).mean(axis=1)

        if self.needs_resampling:
            audio = resample_poly(audio, self._up, self._down)

        return np.asarray(audio, dtype=np.float32)


def compute_rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


class AudioCapture:
    """
    Microphone capture session feeding a RingBuffer.

    Only one session is active at a time; start() while running is a no-op.
    """

    def __init__(
        self,
        ring_buffer: RingBuffer | None = None,
        device_index: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
        preprocessor: SpeechPreprocessor | None = None,
        audio_factory: Callable[[], Any] | None = None,
    ):
        """
        Initialize the capture.

        Args:
            ring_buffer: Shared buffer (created from buffer_seconds if None)
            device_index: Input device index (None for default)
            chunk_size: Frames per PyAudio callback block
            buffer_seconds: Ring buffer length when one is created here
            preprocessor: Speech window extractor used by snapshot_speech_samples()
            audio_factory: Returns a PyAudio-compatible object (pyaudio.PyAudio by default)
        """
        self.ring_buffer = ring_buffer or RingBuffer(int(SAMPLE_RATE * buffer_seconds))
        self.device_index = device_index
        self.chunk_size = chunk_size
        self.preprocessor = preprocessor or SpeechPreprocessor()
        self._audio_factory = audio_factory

        self._audio: Any = None
        self._stream: Any = None
        self._converter: BlockConverter | None = None
        self._blocks: queue.Queue[bytes | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._running = False
        self._state_lock = threading.Lock()

        self.last_rms: float = 0.0
        self.stats = {"blocks": 0, "dropped_blocks": 0, "input_overflows": 0}
        self._stats_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def _create_audio(self) -> Any:
        if self._audio_factory is not None:
            return self._audio_factory()
        if not HAS_PYAUDIO:
            raise EngineStartError("PyAudio is required for microphone capture")
        return pyaudio.PyAudio()

    def _get_device_info(self) -> dict[str, Any]:
        if self.device_index is not None:
            return dict(self._audio.get_device_info_by_index(self.device_index))
        return dict(self._audio.get_default_input_device_info())

    def _get_supported_channels(
        self, device_index: int | None, sample_rate: int, max_channels: int
    ) -> int:
        """Mono if the device accepts it (preferred for Whisper), otherwise stereo."""
        input_format = self._audio.get_format_from_width(SAMPLE_WIDTH)
        for channels in (1, 2):
            if channels > max(1, max_channels):
                break
            try:
                if self._audio.is_format_supported(
                    sample_rate,
                    input_device=device_index,
                    input_channels=channels,
                    input_format=input_format,
                ):
                    return channels
            except ValueError:
                logger.debug(f"{channels}-channel input not supported, trying next")
        raise EngineStartError(
            f"Input device does not support mono or stereo capture at {sample_rate} Hz"
        )

    def start(self) -> None:
        """
        Open the input device and begin filling the ring buffer.

        Raises:
            EngineStartError: device cannot be opened or converter cannot be built
        """
        with self._state_lock:
            if self._running:
                logger.debug("Audio capture already running")
                return

            self.ring_buffer.clear()
            self.last_rms = 0.0
            self._blocks = queue.Queue()

            try:
                self._audio = self._create_audio()
                device_info = self._get_device_info()
                device_index = int(device_info.get("index", self.device_index or 0))
                native_rate = int(float(device_info.get("defaultSampleRate", 0)))
                max_channels = int(device_info.get("maxInputChannels", 1))

                channels = self._get_supported_channels(
                    device_index, native_rate, max_channels
                )
                self._converter = BlockConverter(native_rate, channels)

                self._stream = self._audio.open(
                    format=self._audio.get_format_from_width(SAMPLE_WIDTH),
                    channels=channels,
                    rate=native_rate,
                    input=True,
                    frames_per_buffer=self.chunk_size,
                    input_device_index=device_index,
                    stream_callback=self._on_audio_block,
                    start=False,
                )

                self._thread = threading.Thread(
                    target=self._processing_loop, name="audio-processing", daemon=True
                )
                self._running = True
                self._thread.start()
                self._stream.start_stream()

                device_name = device_info.get("name", f"device {device_index}")
                resampling = " (resampling to 16 kHz)" if self._converter.needs_resampling else ""
                logger.info(
                    f"Audio capture started: {device_name} @ {native_rate} Hz, "
                    f"{channels} channel(s){resampling}"
                )
            except EngineStartError:
                self._cleanup()
                raise
            except Exception as e:
                self._cleanup()
                raise EngineStartError(f"Failed to start audio capture: {e}") from e

    def stop(self) -> None:
        """Detach the callback and halt the input stream. Idempotent."""
        with self._state_lock:
            if not self._running:
                return
            self._cleanup()
            with self._stats_lock:
                blocks, dropped = self.stats["blocks"], self.stats["dropped_blocks"]
            logger.info(f"Audio capture stopped ({blocks} blocks, {dropped} dropped)")

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def _on_audio_block(self, in_data, frame_count, time_info, status_flags):
        """PyAudio callback thread: hand the block off and return immediately."""
        if status_flags:
            self._count("input_overflows")
        if self._running and in_data:
            self._blocks.put(bytes(in_data))
        return (None, _PA_CONTINUE)

    def _processing_loop(self) -> None:
        while True:
            block = self._blocks.get()
            if block is None:
                break
            self._consume(block)

    def _consume(self, raw: bytes) -> None:
        """Convert one device block and append it; failures drop the block."""
        converter = self._converter
        if converter is None:
            return
        try:
            samples = converter.convert(raw)
        except Exception as e:
            self._count("dropped_blocks")
            logger.debug(f"Dropped audio block: {e}")
            return

        self._count("blocks")
        if samples.size == 0:
            return
        self.ring_buffer.append(samples)
        self.last_rms = compute_rms(samples)

    def _cleanup(self) -> None:
        """Release stream, processing thread and PyAudio, in that order."""
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except Exception:
                logger.debug("Failed to stop/close audio stream during cleanup")
            self._stream = None
        self._running = False

        if self._thread is not None:
            self._blocks.put(None)
            self._thread.join(timeout=1.0)
            self._thread = None

        if self._audio is not None:
            try:
                self._audio.terminate()
            except Exception:
                logger.debug("Failed to terminate PyAudio during cleanup")
            self._audio = None

    def snapshot_speech_samples(self) -> np.ndarray:
        """Current ring buffer contents reduced to the normalized speech window."""
        return self.preprocessor.process(self.ring_buffer.snapshot())

    @staticmethod
    def list_input_devices(
        audio_factory: Callable[[], Any] | None = None,
    ) -> list[dict[str, Any]]:
        """List available microphone input devices."""
        if audio_factory is None and not HAS_PYAUDIO:
            return []

        devices: list[dict[str, Any]] = []
        try:
            audio = audio_factory() if audio_factory else pyaudio.PyAudio()
        except Exception as e:
            logger.error(f"Error opening audio system: {e}")
            return devices

        try:
            for i in range(audio.get_device_count()):
                try:
                    info = audio.get_device_info_by_index(i)
                except Exception:
                    continue
                max_input_channels = int(info.get("maxInputChannels", 0))
                if max_input_channels > 0:
                    devices.append(
                        {
                            "index": i,
                            "name": info.get("name", f"Device {i}"),
                            "channels": max_input_channels,
                            "sample_rate": info.get("defaultSampleRate"),
                        }
                    )
        finally:
            audio.terminate()

        return devices
