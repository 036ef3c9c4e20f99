"""
Shared enums and value types for Voice Input.

These types cross module boundaries (settings, engine, scheduler) and
therefore live outside the core package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LanguageMode(str, Enum):
    """Language selection for decoding. AUTO lets the engine detect."""

    AUTO = "auto"
    RUSSIAN = "russian"
    ENGLISH = "english"
    HEBREW = "hebrew"

    @property
    def display_name(self) -> str:
        return _LANGUAGE_TITLES[self]

    @property
    def whisper_language_code(self) -> str | None:
        """Whisper language code for fixed modes, None for AUTO."""
        return _LANGUAGE_CODES.get(self)

    @classmethod
    def parse(cls, value: Any, default: LanguageMode | None = None) -> "LanguageMode":
        """Parse a mode name or a Whisper code ("en") into a LanguageMode."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for mode in cls:
            if text in (mode.value, mode.whisper_language_code):
                return mode
        if default is not None:
            return default
        raise ValueError(f"Unknown language mode: {value!r}")


_LANGUAGE_TITLES = {
    LanguageMode.AUTO: "Auto (RU/EN/HE)",
    LanguageMode.RUSSIAN: "Русский",
    LanguageMode.ENGLISH: "English",
    LanguageMode.HEBREW: "עברית",
}

_LANGUAGE_CODES = {
    LanguageMode.RUSSIAN: "ru",
    LanguageMode.ENGLISH: "en",
    LanguageMode.HEBREW: "he",
}


class QualityMode(str, Enum):
    """Decode depth used for the final pass."""

    FAST = "fast"
    BALANCED = "balanced"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any, default: QualityMode | None = None) -> "QualityMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            if default is not None:
                return default
            raise


class TranscriptionPass(str, Enum):
    """Which decode slot a transcription runs against."""

    PARTIAL = "partial"
    FINAL = "final"


class SchedulerState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


class SessionOutcome(str, Enum):
    """User-visible result of one push-to-talk session."""

    ACCEPTED = "accepted"
    NO_SPEECH = "no_speech"
    REJECTED = "rejected"
    DECODE_ERROR = "decode_error"


@dataclass(frozen=True)
class TranscriptionOutput:
    """Result of a single decode call."""

    text: str
    detected_language_code: str | None = None
    confidence: float = 0.0

    @classmethod
    def empty(cls) -> "TranscriptionOutput":
        return cls(text="", detected_language_code=None, confidence=0.0)


@dataclass(frozen=True)
class SessionResult:
    """Outcome of a recording session, produced at hotkey release."""

    outcome: SessionOutcome
    duration: float
    text: str = ""
    reason: str | None = None
    output: TranscriptionOutput | None = None
    error: str | None = None
    metrics: dict[str, float] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.outcome is SessionOutcome.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for logging and display."""
        return {
            "outcome": self.outcome.value,
            "duration": round(self.duration, 3),
            "text": self.text,
            "reason": self.reason,
            "language": self.output.detected_language_code if self.output else None,
            "confidence": round(self.output.confidence, 3) if self.output else 0.0,
            "error": self.error,
            "metrics": {k: round(v, 3) for k, v in self.metrics.items()},
        }
