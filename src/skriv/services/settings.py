"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = ["Settings", "SettingsStore", "DEFAULT_DATA_DIR"]

LOGGER = logging.getLogger(__name__)
DEFAULT_DATA_DIR = Path.home() / ".skriv"
_SETTINGS_FILENAME = "settings.json"
_SETTINGS_VERSION = 1
_PATH_ENV_OVERRIDES: Mapping[str, str] = {
    "SKRIV_DATA_DIR": "data_dir",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SKRIV_DEBUG_LOGGING": "debug_logging",
    "SKRIV_SINGLE_INSTANCE": "single_instance",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SKRIV_AUTOSAVE_INTERVAL": "autosave_interval",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class Settings:
    """Application configuration.

    The session itself (tabs, dark mode) lives in ``session.json``; this
    object only describes where things are stored and how the app behaves.
    """

    data_dir: Path = DEFAULT_DATA_DIR
    session_filename: str = "session.json"
    scratch_dirname: str = "temp"
    autosave_interval: float = 1.0
    debug_logging: bool = False
    single_instance: bool = True
    server_name: str = "skriv-instance"

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.autosave_interval < 0:
            self.autosave_interval = 0.0

    @property
    def session_path(self) -> Path:
        return self.data_dir / self.session_filename

    @property
    def scratch_dir(self) -> Path:
        return self.data_dir / self.scratch_dirname

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or (DEFAULT_DATA_DIR / _SETTINGS_FILENAME)

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["data_dir"] = str(settings.data_dir)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            data = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return data

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _PATH_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                overrides[field_name] = Path(value).expanduser()
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}
