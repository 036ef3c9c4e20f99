"""
Local Whisper inference engine.

Holds one faster-whisper model at a time and two decode slots bound to it:
`partial` for the periodic drafts while recording and `final` for the
authoritative decode at release. The slots never share state, so a final
decode can run while a partial one is still in flight.

Lifecycle:
- load(path) tears down the previous model before creating the new one;
  a failure part way through releases whatever was created and leaves the
  engine unloaded
- model switches wait for in-flight decodes to drain
- transcribe() loads on demand, picks decode parameters from the pass and
  the current quality mode, and updates the adaptive language hint after
  final decodes
"""

from __future__ import annotations

import logging
import math
import os
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np

from voice_input.common.models import (
    LanguageMode,
    QualityMode,
    TranscriptionOutput,
    TranscriptionPass,
)
from voice_input.core import diagnostics as events
from voice_input.core.audio_utils import clear_gpu_cache, resolve_device
from voice_input.core.diagnostics import DiagnosticsSink, NullDiagnostics
from voice_input.core.errors import (
    DecodeError,
    EngineNotReadyError,
    ModelLoadError,
    VoiceInputError,
)
from voice_input.core.speech_preprocessor import SAMPLE_RATE
from voice_input.core.stt.language import (
    DEFAULT_SUPPORTED_LANGUAGES,
    AdaptiveLanguageState,
    constrain_language,
)

logger = logging.getLogger(__name__)

# Whisper keeps roughly the last 224 prompt tokens; a short tail is enough
MAX_CONTEXT_CHARS = 200

# best_of only applies once decoding falls back to a non-zero temperature
BALANCED_TEMPERATURES = (0.0, 0.2, 0.4)


def default_cpu_threads() -> int:
    """All cores but one, never fewer than one."""
    return max(1, (os.cpu_count() or 1) - 1)


@dataclass(frozen=True)
class DecodeParams:
    """Decoder strategy for one pass."""

    beam_size: int = 1
    best_of: int = 1
    temperature: float | tuple[float, ...] = 0.0
    carry_context: bool = False

    def to_transcribe_kwargs(
        self, language: str | None, context_text: str = ""
    ) -> dict[str, Any]:
        """Keyword arguments for WhisperModel.transcribe()."""
        return {
            "language": language,
            "task": "transcribe",
            "beam_size": self.beam_size,
            "best_of": self.best_of,
            "temperature": self.temperature,
            "condition_on_previous_text": self.carry_context,
            "initial_prompt": context_text if self.carry_context and context_text else None,
            "without_timestamps": True,
            "word_timestamps": False,
            "vad_filter": False,
        }


PARTIAL_PARAMS = DecodeParams()

FINAL_PARAMS: dict[QualityMode, DecodeParams] = {
    QualityMode.FAST: PARTIAL_PARAMS,
    QualityMode.BALANCED: DecodeParams(
        best_of=3, temperature=BALANCED_TEMPERATURES, carry_context=True
    ),
    QualityMode.HIGH: DecodeParams(beam_size=4, carry_context=True),
}


def decode_params_for(decode_pass: TranscriptionPass, quality_mode: QualityMode) -> DecodeParams:
    if decode_pass is TranscriptionPass.PARTIAL:
        return PARTIAL_PARAMS
    return FINAL_PARAMS[quality_mode]


def collect_text(segments: Iterable[Any]) -> str:
    """Stripped, non-empty segment texts joined by single spaces."""
    parts = [str(seg.text).strip() for seg in segments]
    return " ".join(part for part in parts if part)


def average_confidence(segments: Iterable[Any]) -> float:
    """
    Mean per-token probability over all segments, in [0, 1].

    Word probabilities are used when the segment carries them; otherwise every
    token of the segment counts as exp(avg_logprob).
    """
    total = 0.0
    count = 0
    for seg in segments:
        words = getattr(seg, "words", None)
        if words:
            for word in words:
                total += float(word.probability)
                count += 1
            continue
        tokens = len(getattr(seg, "tokens", None) or ())
        if tokens:
            total += math.exp(float(seg.avg_logprob)) * tokens
            count += tokens
    if count == 0:
        return 0.0
    return min(1.0, max(0.0, total / count))


class DecodeState:
    """
    One decode slot bound to a loaded model.

    Carries the text context used as the decoder prompt for passes that allow
    it, plus a decode counter. Callers hold `lock` around decode().
    """

    def __init__(self, name: str, model: Any):
        self.name = name
        self.model = model
        self.lock = threading.Lock()
        self.context_text = ""
        self.decode_count = 0

    @property
    def is_ready(self) -> bool:
        return self.model is not None

    def decode(
        self, samples: np.ndarray, params: DecodeParams, language: str | None
    ) -> tuple[list[Any], Any]:
        if self.model is None:
            raise EngineNotReadyError(f"Decode slot '{self.name}' has been released")

        segments, info = self.model.transcribe(
            samples, **params.to_transcribe_kwargs(language, self.context_text)
        )
        # Segments are generated lazily; the decode runs while consuming them
        segments = list(segments)
        self.decode_count += 1
        return segments, info

    def remember(self, text: str, params: DecodeParams) -> None:
        if not params.carry_context or not text:
            return
        self.context_text = f"{self.context_text} {text}".strip()[-MAX_CONTEXT_CHARS:]

    def release(self) -> None:
        self.model = None
        self.context_text = ""


class InferenceEngine:
    """
    Whisper model plus the partial and final decode slots.

    The engine is an ordinary object owned by whoever builds the pipeline;
    there is no process-wide instance.
    """

    def __init__(
        self,
        model_factory: Callable[[str], Any] | None = None,
        state_factory: Callable[[str, Any], DecodeState] | None = None,
        device: str = "auto",
        compute_type: str = "default",
        cpu_threads: int | None = None,
        download_root: str | None = None,
        supported_languages: Iterable[str] = DEFAULT_SUPPORTED_LANGUAGES,
        quality_mode_source: Callable[[], QualityMode] | None = None,
        language_state: AdaptiveLanguageState | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ):
        """
        Initialize the engine. No model is loaded until load() or transcribe().

        Args:
            model_factory: Creates a model from a path (faster_whisper.WhisperModel by default)
            state_factory: Creates a decode slot for (name, model) (DecodeState by default)
            device: "auto", "cuda" or "cpu"
            compute_type: CTranslate2 compute type
            cpu_threads: Decoder threads (None for all cores but one)
            download_root: Cache directory for models given by hub name
            supported_languages: Codes reported as detected; others become None
            quality_mode_source: Returns the final-pass quality mode at call time
            language_state: Adaptive language hint (created if None)
            diagnostics: Receives model_loaded / model_unloaded events
        """
        self._model_factory = model_factory or self._create_whisper_model
        self._state_factory = state_factory or DecodeState
        self.device = device
        self.compute_type = compute_type
        self.cpu_threads = cpu_threads or default_cpu_threads()
        self.download_root = download_root
        self.supported_languages = tuple(supported_languages)
        self._quality_mode_source = quality_mode_source or (lambda: QualityMode.BALANCED)
        self.language_state = language_state or AdaptiveLanguageState()
        self.diagnostics = diagnostics or NullDiagnostics()

        self._model: Any = None
        self._slots: dict[TranscriptionPass, DecodeState] = {}
        self._loaded_path: str | None = None
        self._active_decodes = 0
        self._cond = threading.Condition()

    @property
    def is_loaded(self) -> bool:
        with self._cond:
            return self._model is not None

    @property
    def loaded_model_path(self) -> str | None:
        with self._cond:
            return self._loaded_path

    def slot(self, decode_pass: TranscriptionPass) -> DecodeState | None:
        with self._cond:
            return self._slots.get(decode_pass)

    def _create_whisper_model(self, model_path: str) -> Any:
        import faster_whisper

        device = resolve_device(self.device)
        # Two workers so the partial and final slots can decode concurrently
        return faster_whisper.WhisperModel(
            model_size_or_path=model_path,
            device=device,
            compute_type=self.compute_type,
            cpu_threads=self.cpu_threads,
            num_workers=2,
            download_root=self.download_root,
        )

    def load(self, model_path: str) -> None:
        """
        Load a model and create both decode slots.

        No-op when the same path is already loaded.

        Raises:
            ModelLoadError: the model or either slot could not be created
        """
        with self._cond:
            self._ensure_loaded_locked(model_path)

    def unload(self) -> None:
        """Wait for in-flight decodes, then release the slots and the model."""
        with self._cond:
            self._cond.wait_for(lambda: self._active_decodes == 0)
            if self._model is None:
                return
            path = self._loaded_path
            self._release_locked()
        self.diagnostics.emit(events.MODEL_UNLOADED, model=path)

    def warmup(self, model_path: str) -> None:
        """Load the model and run one throwaway partial decode over silence."""
        self.load(model_path)
        try:
            self.transcribe(
                np.zeros(SAMPLE_RATE, dtype=np.float32),
                model_path,
                LanguageMode.ENGLISH,
                TranscriptionPass.PARTIAL,
            )
            logger.debug("Model warmup complete")
        except VoiceInputError as e:
            logger.warning(f"Model warmup failed (non-critical): {e}")

    def _ensure_loaded_locked(self, model_path: str) -> None:
        if self._model is not None and self._loaded_path == model_path:
            return
        self._cond.wait_for(lambda: self._active_decodes == 0)
        # Another thread may have loaded it while we waited
        if self._model is not None and self._loaded_path == model_path:
            return

        previous = self._loaded_path
        if self._model is not None:
            self._release_locked()
            self.diagnostics.emit(events.MODEL_UNLOADED, model=previous)

        logger.info(f"Loading Whisper model: {model_path}")
        start_time = time.time()
        model: Any = None
        created: dict[TranscriptionPass, DecodeState] = {}
        try:
            model = self._model_factory(model_path)
            for decode_pass in (TranscriptionPass.FINAL, TranscriptionPass.PARTIAL):
                created[decode_pass] = self._state_factory(decode_pass.value, model)
        except Exception as e:
            for state in created.values():
                state.release()
            created.clear()
            model = None
            clear_gpu_cache()
            logger.error(f"Failed to load model {model_path}: {e}")
            if isinstance(e, ModelLoadError):
                raise
            raise ModelLoadError(f"Failed to load model {model_path}: {e}") from e

        self._model = model
        self._slots = created
        self._loaded_path = model_path
        elapsed = time.time() - start_time
        logger.info(f"Whisper model loaded in {elapsed:.2f}s")
        self.diagnostics.emit(events.MODEL_LOADED, model=model_path, load_seconds=elapsed)

    def _release_locked(self) -> None:
        for state in self._slots.values():
            with state.lock:
                state.release()
        self._slots = {}
        self._model = None
        self._loaded_path = None
        clear_gpu_cache()
        logger.info("Whisper model unloaded")

    def transcribe(
        self,
        samples: np.ndarray,
        model_path: str,
        language_mode: LanguageMode = LanguageMode.AUTO,
        decode_pass: TranscriptionPass = TranscriptionPass.FINAL,
    ) -> TranscriptionOutput:
        """
        Decode 16 kHz mono samples on the slot for `decode_pass`.

        Returns:
            TranscriptionOutput (empty for empty input, without loading anything)

        Raises:
            ModelLoadError: the model could not be loaded
            EngineNotReadyError: the requested slot is not available
            DecodeError: the decode call itself failed
        """
        samples = np.asarray(samples, dtype=np.float32)
        if samples.size == 0:
            return TranscriptionOutput.empty()

        with self._cond:
            self._ensure_loaded_locked(model_path)
            state = self._slots.get(decode_pass)
            if state is None or not state.is_ready:
                raise EngineNotReadyError(
                    f"No {decode_pass.value} decode slot for model {model_path}"
                )
            self._active_decodes += 1

        try:
            return self._run_decode(state, samples, language_mode, decode_pass)
        finally:
            with self._cond:
                self._active_decodes -= 1
                self._cond.notify_all()

    def _run_decode(
        self,
        state: DecodeState,
        samples: np.ndarray,
        language_mode: LanguageMode,
        decode_pass: TranscriptionPass,
    ) -> TranscriptionOutput:
        if decode_pass is TranscriptionPass.PARTIAL:
            params = PARTIAL_PARAMS
        else:
            quality = QualityMode.parse(self._quality_mode_source(), default=QualityMode.BALANCED)
            params = decode_params_for(decode_pass, quality)
        hint = self.language_state.resolve_hint(language_mode)

        with state.lock:
            try:
                segments, info = state.decode(samples, params, hint)
            except VoiceInputError:
                raise
            except Exception as e:
                raise DecodeError(f"{decode_pass.value} decode failed: {e}") from e

            text = collect_text(segments)
            state.remember(text, params)

        detected = constrain_language(getattr(info, "language", None), self.supported_languages)
        confidence = average_confidence(segments)

        if decode_pass is TranscriptionPass.FINAL:
            self.language_state.update(language_mode, detected, confidence)

        return TranscriptionOutput(
            text=text,
            detected_language_code=detected,
            confidence=confidence,
        )

    def get_status(self) -> dict[str, Any]:
        """Get engine status information."""
        with self._cond:
            return {
                "model": self._loaded_path,
                "loaded": self._model is not None,
                "device": self.device,
                "compute_type": self.compute_type,
                "cpu_threads": self.cpu_threads,
                "active_decodes": self._active_decodes,
                "language_hint": self.language_state.hint,
            }

    def __enter__(self) -> "InferenceEngine":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.unload()
