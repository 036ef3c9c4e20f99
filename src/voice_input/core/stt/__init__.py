"""
Speech-to-text engine package for Voice Input.

Key components:
- InferenceEngine: one Whisper model with partial and final decode slots
- DecodeState: per-pass decode slot
- AdaptiveLanguageState: language hint learned from final decodes

The engine module imports faster-whisper on first model load; the exports
below are resolved lazily so that importing the language helpers stays cheap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from voice_input.core.stt.engine import DecodeState, InferenceEngine

from voice_input.core.stt.language import AdaptiveLanguageState, constrain_language

__all__ = [
    "AdaptiveLanguageState",
    "DecodeState",
    "InferenceEngine",
    "constrain_language",
]


def __getattr__(name: str) -> Any:
    """Lazily resolve engine exports."""
    if name in {"InferenceEngine", "DecodeState"}:
        from voice_input.core.stt.engine import DecodeState, InferenceEngine

        exports = {
            "InferenceEngine": InferenceEngine,
            "DecodeState": DecodeState,
        }
        return exports[name]

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
