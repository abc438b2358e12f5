"""Key-value application settings."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ripit.error_handling import PersistenceError, ValidationError
from ripit.storage.writer import SafeFileWriter

logger = logging.getLogger(__name__)


class AppSettings(BaseModel):
    """Settings the user can change at runtime."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    base_download_dir: str = Field(alias="baseDownloadDir")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


SETTING_KEYS = frozenset(field.alias for field in AppSettings.model_fields.values())


class SettingsStore(ABC):
    """Get/set contract for application settings."""

    @abstractmethod
    def get_param(self, key: str) -> Any: ...

    @abstractmethod
    def set_param(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def get_config(self) -> AppSettings: ...

    def base_download_dir(self) -> Path:
        return Path(self.get_param("baseDownloadDir")).expanduser()


class JsonSettingsStore(SettingsStore):
    """Settings persisted as a JSON object, falling back to defaults."""

    def __init__(self, path: Path, defaults: AppSettings):
        self.path = path
        self.writer = SafeFileWriter(path)
        self._settings = defaults.model_copy()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            stored = json.loads(self.writer.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return
        if not isinstance(stored, dict):
            logger.warning(f"Ignoring settings file {self.path}: not an object")
            return

        merged = {**self._settings.to_dict(), **stored}
        try:
            self._settings = AppSettings.model_validate(merged)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring invalid settings in {self.path}: {e}")

    def get_param(self, key: str) -> Any:
        if key not in SETTING_KEYS:
            msg = f"Unknown setting: {key}"
            raise ValidationError(msg)
        return self._settings.to_dict()[key]

    def set_param(self, key: str, value: Any) -> None:
        if key not in SETTING_KEYS:
            msg = f"Unknown setting: {key}"
            raise ValidationError(msg)
        try:
            updated = AppSettings.model_validate({**self._settings.to_dict(), key: value})
        except PydanticValidationError as e:
            msg = f"Invalid value for {key}"
            raise ValidationError(msg, details=str(e), original_error=e) from e

        try:
            self.writer.write_now(updated.to_dict())
        except OSError as e:
            msg = f"Failed to save settings: {e}"
            raise PersistenceError(msg, path=self.path, original_error=e) from e

        self._settings = updated
        logger.info(f"Setting {key} changed")

    def get_config(self) -> AppSettings:
        return self._settings.model_copy()
