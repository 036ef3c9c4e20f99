"""
Plausibility check for final transcripts.

Very short recordings that decode to long or dense text are almost always
decoder artifacts (hallucinations on noise or leftover buffered audio), so
they are rejected instead of pasted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voice_input.common.config import VoiceInputConfig

EMPTY_TEXT = "empty_text"
TOO_SHORT_AUDIO = "too_short_audio"
SHORT_AUDIO_LONG_TEXT = "short_audio_long_text"
MEDIUM_AUDIO_LONG_TEXT = "medium_audio_long_text"
TOO_DENSE_TEXT = "too_dense_text"
REPEATED_TEXT = "repeated_text"

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    lowered = _PUNCTUATION_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", lowered).strip()


@dataclass(frozen=True)
class AcceptancePolicy:
    """Thresholds for rejecting implausible transcripts."""

    min_duration: float = 0.16
    short_duration: float = 0.60
    short_max_words: int = 5
    short_max_chars: int = 28
    medium_duration: float = 1.20
    medium_max_words: int = 12
    medium_max_chars: int = 90
    max_chars_per_second: float = 35.0
    rate_duration_floor: float = 0.2
    repeat_window: float = 0.9

    @classmethod
    def from_config(cls, config: VoiceInputConfig) -> AcceptancePolicy:
        section = config.section("acceptance")
        defaults = cls()
        return cls(
            min_duration=float(section.get("min_duration", defaults.min_duration)),
            short_duration=float(section.get("short_duration", defaults.short_duration)),
            short_max_words=int(section.get("short_max_words", defaults.short_max_words)),
            short_max_chars=int(section.get("short_max_chars", defaults.short_max_chars)),
            medium_duration=float(section.get("medium_duration", defaults.medium_duration)),
            medium_max_words=int(
                section.get("medium_max_words", defaults.medium_max_words)
            ),
            medium_max_chars=int(
                section.get("medium_max_chars", defaults.medium_max_chars)
            ),
            max_chars_per_second=float(
                section.get("max_chars_per_second", defaults.max_chars_per_second)
            ),
            rate_duration_floor=float(
                section.get("rate_duration_floor", defaults.rate_duration_floor)
            ),
            repeat_window=float(section.get("repeat_window", defaults.repeat_window)),
        )

    def evaluate(
        self, text: str, duration: float, previous_normalized: str | None = None
    ) -> str | None:
        """
        Check a final transcript against the session duration.

        Returns:
            The reason code of the first rule that rejects it, or None to accept
        """
        trimmed = text.strip()
        if not trimmed:
            return EMPTY_TEXT
        if duration < self.min_duration:
            return TOO_SHORT_AUDIO

        words = len(trimmed.split())
        chars = len(trimmed)

        if duration < self.short_duration and (
            words >= self.short_max_words or chars >= self.short_max_chars
        ):
            return SHORT_AUDIO_LONG_TEXT
        if duration < self.medium_duration and (
            words >= self.medium_max_words or chars >= self.medium_max_chars
        ):
            return MEDIUM_AUDIO_LONG_TEXT
        if chars / max(duration, self.rate_duration_floor) > self.max_chars_per_second:
            return TOO_DENSE_TEXT
        if (
            previous_normalized
            and duration < self.repeat_window
            and normalize_text(trimmed) == previous_normalized
        ):
            return REPEATED_TEXT
        return None
