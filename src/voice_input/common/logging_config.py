"""
Logging configuration for Voice Input.

Console output goes to stdout; a DEBUG-level log file lives next to the
configuration file and is wiped at startup for clean per-session logs.
"""

import logging
import sys
from pathlib import Path

from voice_input.common.config import get_config_dir

LOG_FILENAME = "voice_input.log"

# Third-party loggers that are chatty at INFO/DEBUG
_NOISY_LOGGERS = ("faster_whisper", "ctranslate2", "huggingface_hub", "urllib3")


def get_log_file() -> Path:
    """Get platform-specific log file path."""
    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir / LOG_FILENAME


def setup_logging(
    verbose: bool = False,
    level: str = "INFO",
    component: str = "voice_input",
    wipe_on_startup: bool = True,
    log_file: Path | None = None,
) -> logging.Logger:
    """
    Set up logging with file and console handlers.

    Args:
        verbose: Enable debug logging on the console, including third-party libraries
        level: Console level name when not verbose
        component: Component name for log messages
        wipe_on_startup: Whether to wipe the log file on startup
        log_file: Override for the log file path

    Returns:
        Logger instance for the component
    """
    console_level = (
        logging.DEBUG if verbose else getattr(logging, str(level).upper(), logging.INFO)
    )

    verbose_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - "
        f"[%(filename)s:%(lineno)d] - %(message)s"
    )
    console_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    has_file_handler = any(
        isinstance(h, logging.FileHandler) for h in root_logger.handlers
    )
    if not has_file_handler:
        root_logger.handlers.clear()

    has_console_handler = any(
        isinstance(h, logging.StreamHandler)
        and getattr(h, "stream", None) is sys.stdout
        for h in root_logger.handlers
    )
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if not has_file_handler:
        try:
            path = log_file or get_log_file()
            if wipe_on_startup and path.exists():
                path.unlink()

            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(verbose_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not set up file logging: {e}")

    library_level = logging.DEBUG if verbose else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logging.captureWarnings(True)
    return logging.getLogger(component)
