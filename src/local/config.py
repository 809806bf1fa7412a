import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import src.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    The launcher settings as the Supervisor and console see them.

    Values come from `settings.py` (which already applied `.env`), then the
    supervisor tuning knobs listed in `MODIFIABLE_SETTINGS` may be replaced
    from `overrides.json`. Deployment paths and ports are never overridden there.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """
        :param overrides_path: The overrides file, defaults to settings.OVERRIDES_JSON_PATH.
        """
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))
        self.OVERRIDES_JSON_PATH: Path = Path(overrides_path or default_settings.OVERRIDES_JSON_PATH)
        self._apply_overrides(self._read_overrides())

    def _read_overrides(self) -> Dict[str, Any]:
        if not self.OVERRIDES_JSON_PATH.exists():
            return {}
        try:
            with self.OVERRIDES_JSON_PATH.open("r", encoding="utf-8") as f:
                overrides = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            log.error(f"Failed to load overrides file '{self.OVERRIDES_JSON_PATH}': {e}")
            return {}
        if not isinstance(overrides, dict):
            log.error(f"Overrides file '{self.OVERRIDES_JSON_PATH}' does not hold a JSON object. Ignoring.")
            return {}
        return overrides

    def _apply_overrides(self, overrides: Dict[str, Any]) -> None:
        if overrides:
            log.info(f"Applying supervisor overrides from {self.OVERRIDES_JSON_PATH}")
        for key, value in overrides.items():
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"'{key}' cannot be changed through overrides.json. Ignoring.")
                continue
            default = getattr(self, key)
            try:
                setattr(self, key, type(default)(value) if default is not None else value)
            except (TypeError, ValueError) as e:
                log.error(f"Invalid override {key}={value!r}: {e}. Keeping {default!r}.")
                continue
            log.debug(f"Override applied: {key} = {getattr(self, key)!r}")

    def save_overrides(self, overrides_to_save: Dict[str, Any]) -> None:
        """
        Writes supervisor tuning knobs to the overrides file.

        Keys outside `MODIFIABLE_SETTINGS` are dropped. The running server only
        picks the new values up after a restart.

        :param overrides_to_save: Setting names and their new values.
        """
        filtered = {key: value for key, value in overrides_to_save.items() if key in self.MODIFIABLE_SETTINGS}
        if not filtered:
            log.warning("No modifiable settings provided to save.")
            return

        try:
            with self.OVERRIDES_JSON_PATH.open("w", encoding="utf-8") as f:
                json.dump(filtered, f, indent=4)
        except OSError as e:
            log.error(f"Failed to write overrides file '{self.OVERRIDES_JSON_PATH}': {e}")
            return
        log.info(f"Supervisor overrides saved to {self.OVERRIDES_JSON_PATH}")


effective_settings = MergedSettings()
