"""
Push-to-talk transcription scheduler.

Drives one recording session at a time:

    idle -> recording -> finalizing -> idle

While recording, a loop thread periodically submits partial decodes of the
current speech window (at most one in flight) so the caller can show a draft.
On release, capture stops and a single final decode runs on the caller's
thread; its text goes through the acceptance check before it is delivered.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from voice_input.common.models import (
    LanguageMode,
    SchedulerState,
    SessionOutcome,
    SessionResult,
    TranscriptionOutput,
    TranscriptionPass,
)
from voice_input.core import diagnostics as events
from voice_input.core.acceptance import AcceptancePolicy, normalize_text
from voice_input.core.diagnostics import DiagnosticsSink, NullDiagnostics
from voice_input.core.errors import DecodeError, EngineNotReadyError, ModelLoadError
from voice_input.core.speech_preprocessor import SAMPLE_RATE

if TYPE_CHECKING:
    from voice_input.common.config import VoiceInputConfig
    from voice_input.core.audio_capture import AudioCapture
    from voice_input.core.stt.engine import InferenceEngine

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    def deliver(self, text: str) -> bool: ...


class ModelStore(Protocol):
    def model_path(self, model_id: str) -> str: ...


class Settings(Protocol):
    @property
    def language_mode(self) -> LanguageMode: ...

    @property
    def model_id(self) -> str: ...


class UsageSink(Protocol):
    def record_session(self, duration: float, text: str) -> None: ...


@dataclass(frozen=True)
class SchedulerConfig:
    """Timing and size thresholds for the partial loop and final decode."""

    partial_interval: float = 0.45
    min_partial_samples: int = 4800
    min_final_samples: int = 1600
    min_session_duration: float = 0.16
    partial_stall_warning: float = 5.0

    @classmethod
    def from_config(cls, config: VoiceInputConfig) -> SchedulerConfig:
        section = config.section("scheduler")
        defaults = cls()
        return cls(
            partial_interval=float(
                section.get("partial_interval", defaults.partial_interval)
            ),
            min_partial_samples=int(
                section.get("min_partial_samples", defaults.min_partial_samples)
            ),
            min_final_samples=int(
                section.get("min_final_samples", defaults.min_final_samples)
            ),
            min_session_duration=float(
                section.get("min_session_duration", defaults.min_session_duration)
            ),
            partial_stall_warning=float(
                section.get("partial_stall_warning", defaults.partial_stall_warning)
            ),
        )


class TranscriptionScheduler:
    """
    Recording lifecycle, partial drafts and the final accepted transcript.

    The engine and capture objects are injected; the scheduler owns neither
    the model lifecycle nor the audio device configuration.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        capture: AudioCapture,
        model_store: ModelStore,
        settings: Settings,
        output_sink: OutputSink | None = None,
        usage_sink: UsageSink | None = None,
        diagnostics: DiagnosticsSink | None = None,
        policy: AcceptancePolicy | None = None,
        config: SchedulerConfig | None = None,
        on_partial: Callable[[str], None] | None = None,
        on_state_change: Callable[[SchedulerState], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the scheduler.

        Args:
            engine: Inference engine shared with the rest of the application
            capture: Microphone capture feeding the ring buffer
            model_store: Resolves the selected model identifier to a path
            settings: Source of quality mode, language mode and model id
            output_sink: Receives accepted transcripts
            usage_sink: Told about every accepted session
            diagnostics: Receives structured session events
            policy: Acceptance thresholds for final transcripts
            config: Partial loop and final decode thresholds
            on_partial: Called with each new partial draft
            on_state_change: Called on every state transition
            clock: Monotonic time source
        """
        self.engine = engine
        self.capture = capture
        self.model_store = model_store
        self.settings = settings
        self.output_sink = output_sink
        self.usage_sink = usage_sink
        self.diagnostics = diagnostics or NullDiagnostics()
        self.policy = policy or AcceptancePolicy()
        self.config = config or SchedulerConfig()
        self._on_partial = on_partial
        self._on_state_change = on_state_change
        self._clock = clock

        self._lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._session_id = 0
        self._session_start = 0.0
        self._latest_draft = ""
        self._partial_in_flight = False
        self._partial_started = 0.0
        self._last_accepted_normalized: str | None = None

        self._stop_event = threading.Event()
        self._loop_thread: threading.Thread | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="partial-decode"
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SchedulerState.RECORDING

    @property
    def latest_draft(self) -> str:
        with self._lock:
            return self._latest_draft

    @property
    def partial_in_flight(self) -> bool:
        with self._lock:
            return self._partial_in_flight

    def _notify_state(self, state: SchedulerState) -> None:
        """Trigger the state callback; must be called without holding _lock."""
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    # ------------------------------------------------------------------
    # Recording lifecycle
    # ------------------------------------------------------------------

    def start_recording(self) -> bool:
        """
        Start capture and the partial loop.

        Returns:
            True if a session started, False if one is already active

        Raises:
            EngineStartError: the audio device could not be opened
        """
        with self._lock:
            if self._state is not SchedulerState.IDLE:
                logger.warning(f"Cannot start recording while {self._state.value}")
                return False

            self.capture.start()

            self._session_id += 1
            session_id = self._session_id
            self._session_start = self._clock()
            self._latest_draft = ""
            self._stop_event = threading.Event()
            self._state = SchedulerState.RECORDING

            self._loop_thread = threading.Thread(
                target=self._partial_loop,
                args=(session_id, self._stop_event),
                daemon=True,
                name="PartialDecodeLoop",
            )
            self._loop_thread.start()

        self._notify_state(SchedulerState.RECORDING)
        logger.info(f"Recording session {session_id} started")
        self.diagnostics.emit(events.SESSION_START, session=session_id)
        return True

    def stop_and_transcribe(self) -> SessionResult | None:
        """
        End the session and run the final decode on the calling thread.

        Returns:
            SessionResult, or None when no session was recording
        """
        with self._lock:
            if self._state is not SchedulerState.RECORDING:
                logger.warning(f"Cannot stop recording while {self._state.value}")
                return None
            self._state = SchedulerState.FINALIZING
            session_id = self._session_id
            duration = max(0.0, self._clock() - self._session_start)

        self._notify_state(SchedulerState.FINALIZING)
        self._halt_session()
        self.diagnostics.emit(events.SESSION_STOP, session=session_id, duration=duration)

        try:
            result = self._finalize(session_id, duration)
        finally:
            with self._lock:
                self._latest_draft = ""
                self._state = SchedulerState.IDLE
            self._notify_state(SchedulerState.IDLE)

        logger.info(
            f"Session {session_id} finished: {result.outcome.value}"
            + (f" ({result.reason})" if result.reason else "")
        )
        return result

    def cancel(self) -> bool:
        """Stop recording and discard the session without decoding."""
        with self._lock:
            if self._state is not SchedulerState.RECORDING:
                return False
            self._state = SchedulerState.FINALIZING
            session_id = self._session_id
            duration = max(0.0, self._clock() - self._session_start)

        self._notify_state(SchedulerState.FINALIZING)
        self._halt_session()
        with self._lock:
            self._latest_draft = ""
            self._state = SchedulerState.IDLE
        self._notify_state(SchedulerState.IDLE)

        logger.info(f"Recording session {session_id} cancelled")
        self.diagnostics.emit(
            events.SESSION_STOP, session=session_id, duration=duration, cancelled=True
        )
        return True

    def shutdown(self) -> None:
        """Cancel any session and stop the partial decode worker."""
        self.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Transcription scheduler shut down")

    def _halt_session(self) -> None:
        """Stop the partial loop, then the capture."""
        self._stop_event.set()
        thread = self._loop_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.partial_interval + 1.0)
            if thread.is_alive():
                logger.warning("Partial decode loop did not stop in time")
        self._loop_thread = None
        self.capture.stop()

    # ------------------------------------------------------------------
    # Partial drafts
    # ------------------------------------------------------------------

    def _partial_loop(self, session_id: int, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.config.partial_interval):
            self._partial_tick(session_id)

    def _partial_tick(self, session_id: int) -> None:
        """Submit one partial decode unless one is in flight or audio is short."""
        claimed = False
        try:
            with self._lock:
                if session_id != self._session_id or self._state is not SchedulerState.RECORDING:
                    return
                if self._partial_in_flight:
                    stalled = self._clock() - self._partial_started
                    if stalled > self.config.partial_stall_warning:
                        logger.warning(
                            f"Partial decode in flight for {stalled:.1f}s, skipping tick"
                        )
                    return
                if len(self.capture.ring_buffer) < self.config.min_partial_samples:
                    return
                self._partial_in_flight = True
                self._partial_started = self._clock()
                claimed = True

            samples = self.capture.snapshot_speech_samples()
            model_path = self.model_store.model_path(self.settings.model_id)
            language_mode = self.settings.language_mode
            self._executor.submit(
                self._run_partial, session_id, samples, model_path, language_mode
            )
        except Exception as e:
            logger.error(f"Partial decode scheduling failed: {e}")
            if claimed:
                with self._lock:
                    self._partial_in_flight = False

    def _run_partial(
        self,
        session_id: int,
        samples: np.ndarray,
        model_path: str,
        language_mode: LanguageMode,
    ) -> None:
        started = self._clock()
        output: TranscriptionOutput | None = None
        try:
            output = self.engine.transcribe(
                samples, model_path, language_mode, TranscriptionPass.PARTIAL
            )
        except Exception as e:
            logger.warning(f"Partial decode failed: {e}")
        finally:
            # Cleared regardless of session: one partial decode at most across sessions
            with self._lock:
                self._partial_in_flight = False

        if output is None:
            return

        with self._lock:
            if session_id != self._session_id or self._state is not SchedulerState.RECORDING:
                logger.debug(f"Discarding partial result from session {session_id}")
                return
            self._latest_draft = output.text

        self.diagnostics.emit(
            events.PARTIAL_DECODE,
            session=session_id,
            decode_seconds=self._clock() - started,
            samples=int(samples.size),
            chars=len(output.text),
        )
        if self._on_partial:
            try:
                self._on_partial(output.text)
            except Exception as e:
                logger.error(f"Partial callback error: {e}")

    # ------------------------------------------------------------------
    # Final decode
    # ------------------------------------------------------------------

    def _no_speech(self, session_id: int, duration: float, reason: str) -> SessionResult:
        self.diagnostics.emit(
            events.NO_SPEECH, session=session_id, duration=duration, reason=reason
        )
        return SessionResult(
            outcome=SessionOutcome.NO_SPEECH, duration=duration, reason=reason
        )

    def _finalize(self, session_id: int, duration: float) -> SessionResult:
        if duration < self.config.min_session_duration:
            return self._no_speech(session_id, duration, "session_too_short")

        samples = self.capture.snapshot_speech_samples()
        if samples.size < self.config.min_final_samples:
            return self._no_speech(session_id, duration, "window_too_short")

        model_path = self.model_store.model_path(self.settings.model_id)
        language_mode = self.settings.language_mode

        started = self._clock()
        try:
            output = self.engine.transcribe(
                samples, model_path, language_mode, TranscriptionPass.FINAL
            )
        except (ModelLoadError, EngineNotReadyError, DecodeError) as e:
            logger.error(f"Final decode failed: {e}")
            self.diagnostics.emit(
                events.DECODE_ERROR,
                session=session_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return SessionResult(
                outcome=SessionOutcome.DECODE_ERROR,
                duration=duration,
                error=str(e),
                metrics={"samples": float(samples.size)},
            )

        decode_seconds = self._clock() - started
        metrics = {
            "samples": float(samples.size),
            "window_seconds": samples.size / SAMPLE_RATE,
            "decode_seconds": decode_seconds,
        }
        self.diagnostics.emit(
            events.FINAL_DECODE,
            session=session_id,
            decode_seconds=decode_seconds,
            samples=int(samples.size),
            language=output.detected_language_code or "unknown",
            confidence=output.confidence,
            chars=len(output.text),
        )

        reason = self.policy.evaluate(
            output.text, duration, self._last_accepted_normalized
        )
        if reason is not None:
            self.diagnostics.emit(
                events.TRANSCRIPT_REJECTED,
                session=session_id,
                reason=reason,
                duration=duration,
                chars=len(output.text.strip()),
            )
            return SessionResult(
                outcome=SessionOutcome.REJECTED,
                duration=duration,
                text=output.text.strip(),
                reason=reason,
                output=output,
                metrics=metrics,
            )

        text = output.text.strip()
        self._last_accepted_normalized = normalize_text(text)
        metrics["delivered"] = 1.0 if self._deliver(text) else 0.0
        if self.usage_sink is not None:
            try:
                self.usage_sink.record_session(duration, text)
            except Exception as e:
                logger.error(f"Usage sink error: {e}")

        self.diagnostics.emit(
            events.TRANSCRIPT_ACCEPTED,
            session=session_id,
            duration=duration,
            words=len(text.split()),
            language=output.detected_language_code or "unknown",
        )
        return SessionResult(
            outcome=SessionOutcome.ACCEPTED,
            duration=duration,
            text=text,
            output=output,
            metrics=metrics,
        )

    def _deliver(self, text: str) -> bool:
        if self.output_sink is None:
            return False
        try:
            delivered = bool(self.output_sink.deliver(text))
        except Exception as e:
            logger.error(f"Output sink error: {e}")
            return False
        if not delivered:
            logger.warning("Accepted transcript could not be delivered")
        return delivered

    def __enter__(self) -> "TranscriptionScheduler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
