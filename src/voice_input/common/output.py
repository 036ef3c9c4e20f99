"""
Adapters between the transcription scheduler and the outside world:
clipboard delivery, settings read from the config file, and a session
usage tally.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import pyperclip

from voice_input.common.config import VoiceInputConfig
from voice_input.common.models import LanguageMode, QualityMode

logger = logging.getLogger(__name__)


class ClipboardOutputSink:
    """Delivers accepted text by copying it to the system clipboard."""

    def __init__(self, verify: bool = True):
        self.verify = verify

    def deliver(self, text: str) -> bool:
        """Safely copy text to clipboard with error handling."""
        try:
            pyperclip.copy(text)
            # Verify the copy worked
            if not self.verify or pyperclip.paste() == text:
                return True
            logger.warning("Clipboard copy verification failed")
            return False
        except pyperclip.PyperclipException as e:
            logger.warning(f"Clipboard error: {e}")
            return False


class ConfigSettings:
    """Settings view over VoiceInputConfig; every read reflects the current config."""

    def __init__(self, config: VoiceInputConfig):
        self.config = config

    @property
    def quality_mode(self) -> QualityMode:
        return self.config.quality_mode

    @property
    def language_mode(self) -> LanguageMode:
        return self.config.language_mode

    @property
    def model_id(self) -> str:
        return self.config.model_id


@dataclass
class UsageStats:
    sessions: int = 0
    seconds: float = 0.0
    words: int = 0


class UsageCounter:
    """In-memory tally of accepted sessions."""

    def __init__(self) -> None:
        self._stats = UsageStats()
        self._lock = threading.Lock()

    def record_session(self, duration: float, text: str) -> None:
        with self._lock:
            self._stats.sessions += 1
            self._stats.seconds += max(0.0, duration)
            self._stats.words += len(text.split())

    @property
    def stats(self) -> UsageStats:
        with self._lock:
            return UsageStats(
                sessions=self._stats.sessions,
                seconds=self._stats.seconds,
                words=self._stats.words,
            )
