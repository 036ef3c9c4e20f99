"""
Supported-language filtering and the adaptive language hint.

In automatic mode the engine learns which supported language the user is
speaking: three consistent, confident final decodes lock the hint; one
low-confidence decode or any fixed-language decode forgets it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from voice_input.common.models import LanguageMode

logger = logging.getLogger(__name__)

DEFAULT_SUPPORTED_LANGUAGES: tuple[str, ...] = ("ru", "en", "he")


def constrain_language(
    code: str | None, supported: Iterable[str] = DEFAULT_SUPPORTED_LANGUAGES
) -> str | None:
    """Return the code if it is supported, None ("unknown") otherwise."""
    if not code:
        return None
    normalized = code.strip().lower()
    return normalized if normalized in set(supported) else None


class AdaptiveLanguageState:
    """Running language hint learned from final decodes in automatic mode."""

    def __init__(self, min_confidence: float = 0.55, streak_length: int = 3):
        self.min_confidence = min_confidence
        self.streak_length = max(1, int(streak_length))
        self._hint: str | None = None
        self._streak_code: str | None = None
        self._streak_count = 0
        self._lock = threading.Lock()

    @property
    def hint(self) -> str | None:
        with self._lock:
            return self._hint

    @property
    def streak(self) -> tuple[str | None, int]:
        with self._lock:
            return self._streak_code, self._streak_count

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()

    def _reset_locked(self) -> None:
        if self._hint is not None:
            logger.debug(f"Adaptive language hint {self._hint!r} cleared")
        self._hint = None
        self._streak_code = None
        self._streak_count = 0

    def resolve_hint(self, mode: LanguageMode) -> str | None:
        """Language code to force for a decode, or None to auto-detect."""
        if mode is LanguageMode.AUTO:
            return self.hint
        return mode.whisper_language_code

    def update(
        self, mode: LanguageMode, detected_code: str | None, confidence: float
    ) -> str | None:
        """Record a final decode; returns the hint in effect afterwards."""
        with self._lock:
            if mode is not LanguageMode.AUTO:
                self._reset_locked()
                return None

            if confidence < self.min_confidence or not detected_code:
                self._reset_locked()
                return None

            if detected_code == self._streak_code:
                self._streak_count += 1
            else:
                self._streak_code = detected_code
                self._streak_count = 1

            if self._streak_count >= self.streak_length and self._hint != detected_code:
                self._hint = detected_code
                logger.info(
                    f"Adopted adaptive language hint {detected_code!r} "
                    f"after {self._streak_count} consistent decodes"
                )
            return self._hint
