"""
Configuration management for Voice Input.

Handles loading and saving the YAML configuration from:
- Platform-specific config directories
- Environment variable overrides
- Command line arguments (applied by the entry point via set())

Thread/process safety:
- Uses file locking (fcntl on Linux, skipped on Windows)
- Uses atomic writes (write to temp file, then rename)
"""

import copy
import os
import platform
from pathlib import Path
from typing import Any

import yaml

from voice_input.common.models import LanguageMode, QualityMode

# File locking support (Linux/Unix only)
fcntl = None  # type: ignore[assignment]
try:
    import fcntl as _fcntl

    fcntl = _fcntl
except ImportError:
    pass

APP_DIR_NAME = "VoiceInput"
CONFIG_FILENAME = "config.yaml"


def get_config_dir() -> Path:
    """
    Get platform-specific configuration directory.

    Returns:
        Path to user config directory:
        - Linux: ~/.config/VoiceInput/
        - Windows: ~/Documents/VoiceInput/
        - macOS: ~/Library/Application Support/VoiceInput/
    """
    system = platform.system()

    if system == "Windows":
        config_dir = Path.home() / "Documents" / APP_DIR_NAME
    elif system == "Darwin":  # macOS
        config_dir = Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    else:  # Linux and others
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            config_dir = Path(xdg_config) / APP_DIR_NAME
        else:
            config_dir = Path.home() / ".config" / APP_DIR_NAME

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_default_config() -> dict[str, Any]:
    """Get default configuration."""
    return {
        "audio": {
            "device_index": None,
            "chunk_size": 2048,
            "buffer_seconds": 4.0,
        },
        "preprocessing": {
            "frame_size": 160,
            "energy_threshold": 0.0025,
            "pad_seconds": 0.18,
            "min_trimmed_samples": 800,
            "target_peak": 0.18,
            "max_gain": 12.0,
            "gain_threshold": 1.01,
        },
        "engine": {
            "model": "small",
            "models_dir": None,  # None -> <config dir>/models
            "device": "auto",
            "compute_type": "default",
            "cpu_threads": None,  # None -> cpu_count - 1
            "quality_mode": QualityMode.BALANCED.value,
            "language_mode": LanguageMode.AUTO.value,
            "supported_languages": ["ru", "en", "he"],
            "warmup": True,
        },
        "scheduler": {
            "partial_interval": 0.45,
            "min_partial_samples": 4800,
            "min_final_samples": 1600,
            "min_session_duration": 0.16,
            "partial_stall_warning": 5.0,
        },
        "acceptance": {
            "min_duration": 0.16,
            "short_duration": 0.60,
            "short_max_words": 5,
            "short_max_chars": 28,
            "medium_duration": 1.20,
            "medium_max_words": 12,
            "medium_max_chars": 90,
            "max_chars_per_second": 35.0,
            "rate_duration_floor": 0.2,
            "repeat_window": 0.9,
        },
        "adaptive_language": {
            "min_confidence": 0.55,
            "streak_length": 3,
        },
        "output": {
            "auto_copy": True,
        },
        "logging": {
            "level": "INFO",
            "wipe_on_startup": True,
        },
    }


class VoiceInputConfig:
    """Voice Input configuration manager."""

    _ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
        "VOICE_INPUT_MODEL": ("engine", "model"),
        "VOICE_INPUT_LANGUAGE": ("engine", "language_mode"),
        "VOICE_INPUT_QUALITY": ("engine", "quality_mode"),
        "LOG_LEVEL": ("logging", "level"),
    }

    def __init__(self, config_path: Path | None = None):
        """
        Initialize configuration.

        Args:
            config_path: Optional path to config file
        """
        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = get_config_dir() / CONFIG_FILENAME

        self.config = get_default_config()
        self._load()
        self._apply_env_overrides()

    def _load(self) -> None:
        """Load configuration from file with shared lock for thread/process safety."""
        if not self.config_path.exists():
            return
        try:
            with open(self.config_path, encoding="utf-8") as f:
                if fcntl is not None:
                    fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    loaded = yaml.safe_load(f) or {}
                finally:
                    if fcntl is not None:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except (yaml.YAMLError, OSError) as e:
            print(f"Warning: Could not load config: {e}")
            return

        if not isinstance(loaded, dict):
            print(
                "Warning: Ignoring config file whose top level is "
                f"{type(loaded).__name__}, not a mapping"
            )
            return
        self._deep_merge(self.config, loaded)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        for env_var, keys in self._ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                self.set(*keys, value=value)

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Deep merge override into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def save(self) -> bool:
        """
        Save configuration to file with exclusive lock and atomic write.
        """
        tmp_path = None
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            tmp_path = self.config_path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                if fcntl is not None:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    yaml.dump(
                        self.config,
                        f,
                        default_flow_style=False,
                        sort_keys=False,
                        allow_unicode=True,
                    )
                finally:
                    if fcntl is not None:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)

            os.replace(tmp_path, self.config_path)
            return True
        except OSError as e:
            print(f"Error saving config: {e}")
            if tmp_path and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
            return False

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a configuration value by path.

        Example:
            config.get("engine", "model")
            config.get("logging", "level", default="INFO")
        """
        for key in keys:
            if not isinstance(key, str):
                raise TypeError(
                    f"Config keys must be strings, got {type(key).__name__}; "
                    "pass defaults with the default= keyword"
                )
        value: Any = self.config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, *keys: str, value: Any) -> None:
        """Set a configuration value by path."""
        d = self.config
        for key in keys[:-1]:
            if not isinstance(d.get(key), dict):
                d[key] = {}
            d = d[key]
        d[keys[-1]] = value

    def section(self, name: str) -> dict[str, Any]:
        """Return a copy of a top-level section (empty dict when missing)."""
        value = self.config.get(name)
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    @property
    def models_dir(self) -> Path:
        """Directory that holds local model folders."""
        configured = self.get("engine", "models_dir")
        if configured:
            return Path(os.path.expandvars(str(configured))).expanduser()
        return self.config_path.parent / "models"

    @property
    def quality_mode(self) -> QualityMode:
        return QualityMode.parse(
            self.get("engine", "quality_mode"), default=QualityMode.BALANCED
        )

    @property
    def language_mode(self) -> LanguageMode:
        return LanguageMode.parse(
            self.get("engine", "language_mode"), default=LanguageMode.AUTO
        )

    @property
    def model_id(self) -> str:
        return str(self.get("engine", "model", default="small"))
