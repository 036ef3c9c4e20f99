"""
Core capture and decode pipeline for Voice Input.

AudioCapture -> RingBuffer -> SpeechPreprocessor -> InferenceEngine ->
TranscriptionScheduler
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from voice_input.core.audio_capture import AudioCapture
    from voice_input.core.ring_buffer import RingBuffer
    from voice_input.core.scheduler import TranscriptionScheduler
    from voice_input.core.speech_preprocessor import SpeechPreprocessor
    from voice_input.core.stt.engine import InferenceEngine

__all__ = [
    "AudioCapture",
    "InferenceEngine",
    "RingBuffer",
    "SpeechPreprocessor",
    "TranscriptionScheduler",
]

_EXPORTS = {
    "AudioCapture": "voice_input.core.audio_capture",
    "InferenceEngine": "voice_input.core.stt.engine",
    "RingBuffer": "voice_input.core.ring_buffer",
    "SpeechPreprocessor": "voice_input.core.speech_preprocessor",
    "TranscriptionScheduler": "voice_input.core.scheduler",
}


def __getattr__(name: str) -> Any:
    """Lazily resolve pipeline exports so importing a submodule stays cheap."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib

    return getattr(importlib.import_module(module_name), name)
