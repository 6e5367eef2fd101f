import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import keepalive.settings as default_settings

log = logging.getLogger(__name__)


class GlobalSync:
    """
    Houses the application configuration.

    Precedence:
    1. Base values from `settings.py` (which already applied `.env`/environment).
    2. Overrides from `overrides.json`, only for keys in `MODIFIABLE_SETTINGS`.

    The supervisor and the watchdog never read this object directly; they are
    handed the dictionary returned by `get_all_settings()`.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """
        Initializes the settings object by loading defaults and overrides.

        :param overrides_path: Alternative overrides file, mainly for tests.
        """
        self._config: Dict[str, Any] = {}
        self._load_defaults()
        if overrides_path is not None:
            self._config["OVERRIDES_JSON_PATH"] = Path(overrides_path)
        self._load_overrides_from_file()

        # Initialize runtime variables not part of the main config dict
        self.start_time = None

    def get(self, item: str, default: Any = None) -> Any:
        """Provides dictionary-like access to settings with a default value."""
        return self._config.get(item, default)

    def __getattr__(self, name: str) -> Any:
        """Allows attribute access to settings, raising an AttributeError if not found."""
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._config:
            return self._config[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        # Uppercase attributes are settings and live in the config dict.
        if name.isupper():
            self._config[name] = value
        else:
            super().__setattr__(name, value)

    def _load_defaults(self) -> None:
        """Loads all uppercase attributes from settings.py as the baseline."""
        for key in dir(default_settings):
            if key.isupper():
                self._config[key] = getattr(default_settings, key)

    def _load_overrides_from_file(self) -> None:
        """Loads whitelisted overrides from the JSON file."""
        overrides_path = Path(self._config["OVERRIDES_JSON_PATH"])
        if not overrides_path.exists():
            return

        try:
            with overrides_path.open('r') as f:
                overrides = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load or parse overrides file '{overrides_path}': {e}")
            return

        if not isinstance(overrides, dict):
            log.error(f"Overrides file '{overrides_path}' must contain a JSON object. Ignoring.")
            return

        log.info(f"Loading runtime config overrides from {overrides_path}")
        for key, value in overrides.items():
            if key not in self._config:
                log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                continue
            if key not in self._config["MODIFIABLE_SETTINGS"]:
                log.warning(f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                continue
            self._config[key] = self._coerce(key, value)
            log.debug(f"Overridden setting: {key} = {value}")

    def _coerce(self, key: str, value: Any) -> Any:
        """Coerces an override to the type of its default value."""
        original_value = self._config.get(key)
        try:
            if isinstance(original_value, bool):
                return str(value).lower() in ('true', '1', 't', 'yes', 'y')
            if isinstance(original_value, Path):
                return Path(value)
            if original_value is not None:
                return type(original_value)(value)
        except (ValueError, TypeError) as e:
            log.error(f"Could not convert override '{value}' for key '{key}', keeping default. Error: {e}")
            return original_value
        return value

    def get_all_settings(self) -> Dict[str, Any]:
        """Returns the entire configuration dictionary."""
        return self._config


# A singleton instance to be imported by entry points and the console
app_globals = GlobalSync()
