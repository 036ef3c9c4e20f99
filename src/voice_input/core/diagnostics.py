"""
Diagnostics events for the capture and decode pipeline.

Components report lifecycle events (session start/stop, decodes, rejections,
model loads) through a DiagnosticsSink. The default sink writes one
structured log line per event.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SESSION_START = "session_start"
SESSION_STOP = "session_stop"
PARTIAL_DECODE = "partial_decode"
FINAL_DECODE = "final_decode"
DECODE_ERROR = "decode_error"
TRANSCRIPT_ACCEPTED = "transcript_accepted"
TRANSCRIPT_REJECTED = "transcript_rejected"
NO_SPEECH = "no_speech"
MODEL_LOADED = "model_loaded"
MODEL_UNLOADED = "model_unloaded"

EVENTS = frozenset(
    {
        SESSION_START,
        SESSION_STOP,
        PARTIAL_DECODE,
        FINAL_DECODE,
        DECODE_ERROR,
        TRANSCRIPT_ACCEPTED,
        TRANSCRIPT_REJECTED,
        NO_SPEECH,
        MODEL_LOADED,
        MODEL_UNLOADED,
    }
)


class DiagnosticsSink(Protocol):
    def emit(self, event: str, **fields: Any) -> None: ...


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, str):
        return repr(value) if (" " in value or not value) else value
    return str(value)


class LoggingDiagnostics:
    """Writes each event as `event key=value ...` to the diagnostics logger."""

    # Everything else logs at INFO
    _LEVELS = {
        DECODE_ERROR: logging.ERROR,
        PARTIAL_DECODE: logging.DEBUG,
    }

    def __init__(self, log: logging.Logger | None = None):
        self._logger = log or logger

    def emit(self, event: str, **fields: Any) -> None:
        if event not in EVENTS:
            self._logger.debug(f"Unknown diagnostics event: {event}")
        level = self._LEVELS.get(event, logging.INFO)
        details = " ".join(f"{key}={_format_value(value)}" for key, value in fields.items())
        self._logger.log(level, f"{event} {details}".rstrip())


class NullDiagnostics:
    """Discards all events."""

    def emit(self, event: str, **fields: Any) -> None:
        pass
