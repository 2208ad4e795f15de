"""
Global application settings and preferences.
Uses JSON file for persistent storage across sessions.

Includes:
- Default worker thread count (``NumberOfThreads``)
- Default denoising window size

The settings directory defaults to ~/.dwidenoise and can be redirected with
the DWIDENOISE_SETTINGS_DIR environment variable.
"""
import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any

# Set up module logger
logger = logging.getLogger(__name__)

SETTINGS_DIR_ENV = 'DWIDENOISE_SETTINGS_DIR'


class AppSettings:
    """
    Singleton class for managing persistent denoiser settings.

    Settings are automatically persisted to a JSON file
    (~/.dwidenoise/settings.json by default).
    """

    _instance: Optional['AppSettings'] = None

    # Settings keys
    NUMBER_OF_THREADS = 'NumberOfThreads'
    DEFAULT_WINDOW_SIZE = 'default_window_size'

    SETTINGS_FILENAME = 'settings.json'

    def __new__(cls):
        """Singleton pattern - only one instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize settings (only once due to singleton)."""
        if self._initialized:
            return

        # Default values. NumberOfThreads=None means "hardware concurrency".
        self._defaults = {
            self.NUMBER_OF_THREADS: None,
            self.DEFAULT_WINDOW_SIZE: 5,
        }

        self.settings_dir = Path(
            os.environ.get(SETTINGS_DIR_ENV, str(Path.home() / '.dwidenoise'))
        )
        self.settings_file = self.settings_dir / self.SETTINGS_FILENAME

        # Current settings (loaded from file or defaults)
        self._settings: Dict[str, Any] = {}

        self._load_settings()

        self._initialized = True
        logger.debug(f"AppSettings initialized from {self.settings_file}")

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton so the next access reloads from disk."""
        cls._instance = None

    def _ensure_settings_dir(self):
        """Ensure the settings directory exists."""
        try:
            self.settings_dir.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.warning(f"Could not create settings directory: {e}")

    def _load_settings(self):
        """Load settings from JSON file."""
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                self._settings = loaded if isinstance(loaded, dict) else {}
                logger.debug(f"Loaded settings from {self.settings_file}")
            except Exception as e:
                logger.warning(f"Could not load settings file: {e}")
                self._settings = {}
        else:
            self._settings = {}
            logger.debug("No settings file found, using defaults")

    def _save_settings(self):
        """Save settings to JSON file."""
        try:
            self._ensure_settings_dir()
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=2, default=str)
            logger.debug(f"Saved settings to {self.settings_file}")
        except Exception as e:
            logger.error(f"Could not save settings: {e}")

    def _get(self, key: str, default=None):
        """Get a setting value, falling back to defaults."""
        if default is None:
            default = self._defaults.get(key)
        return self._settings.get(key, default)

    def _set(self, key: str, value: Any, save: bool = True):
        """Set a setting value and optionally save to file."""
        self._settings[key] = value
        if save:
            self._save_settings()

    def get_int(self, key: str, default: int) -> int:
        """
        Get an integer setting.

        Missing entries return *default*; entries that do not parse as an
        integer are logged and also return *default*.
        """
        value = self._settings.get(key, self._defaults.get(key))
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid integer setting {key}={value!r}")
            return default

    # =========================================================================
    # Processing Settings
    # =========================================================================

    def get_number_of_threads(self, default: int) -> int:
        """
        Get the configured default thread count.

        Args:
            default: Value used when no positive entry is configured
                     (normally the hardware concurrency)
        """
        value = self.get_int(self.NUMBER_OF_THREADS, default)
        return value if value > 0 else default

    def set_number_of_threads(self, threads: Optional[int]) -> None:
        """Set the default thread count (None restores hardware concurrency)."""
        if threads is not None and threads < 1:
            raise ValueError(f"NumberOfThreads must be >= 1, got {threads}")
        self._set(self.NUMBER_OF_THREADS, threads)

    def get_default_window_size(self) -> int:
        """Get default denoising window edge length."""
        return self.get_int(self.DEFAULT_WINDOW_SIZE, 5)

    def set_default_window_size(self, size: int) -> None:
        """Set default denoising window edge length."""
        self._set(self.DEFAULT_WINDOW_SIZE, int(size))

    def reset_to_defaults(self):
        """Reset all settings to default values."""
        self._settings = self._defaults.copy()
        self._save_settings()
        logger.info("Settings reset to defaults")

    def __repr__(self) -> str:
        return (f"AppSettings(file={self.settings_file}, "
                f"threads={self._get(self.NUMBER_OF_THREADS)}, "
                f"window={self.get_default_window_size()})")


# Global singleton instance
def get_settings() -> AppSettings:
    """Get the global settings instance."""
    return AppSettings()
