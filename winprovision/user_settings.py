"""User-configurable settings and selection profiles persisted locally."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List


SETTINGS_DIRNAME = ".winprovision"
SETTINGS_FILENAME = "settings.json"

logger = logging.getLogger(__name__)


def default_settings_path() -> Path:
    return Path.home() / SETTINGS_DIRNAME / SETTINGS_FILENAME


@dataclass
class UserSettings:
    installer_timeout_seconds: float = 300.0
    network_timeout_seconds: float = 15.0
    scratch_dir: str = ""
    direct_download_only: bool = False
    allow_hash_bypass: bool = True
    retry_attempts: int = 1
    retry_base_delay_seconds: float = 2.0
    max_workers: int = 1
    catalog_path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "installer_timeout_seconds": self.installer_timeout_seconds,
            "network_timeout_seconds": self.network_timeout_seconds,
            "scratch_dir": self.scratch_dir,
            "direct_download_only": self.direct_download_only,
            "allow_hash_bypass": self.allow_hash_bypass,
            "retry_attempts": self.retry_attempts,
            "retry_base_delay_seconds": self.retry_base_delay_seconds,
            "max_workers": self.max_workers,
            "catalog_path": self.catalog_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserSettings":
        defaults = cls()

        def _float(key: str) -> float:
            try:
                return float(data.get(key, getattr(defaults, key)))
            except (TypeError, ValueError):
                return getattr(defaults, key)

        def _int(key: str) -> int:
            try:
                return max(int(data.get(key, getattr(defaults, key))), 1)
            except (TypeError, ValueError):
                return getattr(defaults, key)

        def _bool(key: str) -> bool:
            value = data.get(key, getattr(defaults, key))
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)

        def _str(key: str) -> str:
            value = data.get(key, "")
            return str(value) if value is not None else ""

        return cls(
            installer_timeout_seconds=_float("installer_timeout_seconds"),
            network_timeout_seconds=_float("network_timeout_seconds"),
            scratch_dir=_str("scratch_dir"),
            direct_download_only=_bool("direct_download_only"),
            allow_hash_bypass=_bool("allow_hash_bypass"),
            retry_attempts=_int("retry_attempts"),
            retry_base_delay_seconds=_float("retry_base_delay_seconds"),
            max_workers=_int("max_workers"),
            catalog_path=_str("catalog_path"),
        )


class SettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_settings_path()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> UserSettings:
        if not self._path.exists():
            return UserSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return UserSettings()
        if not isinstance(data, dict):
            return UserSettings()
        return UserSettings.from_dict(data)

    def save(self, settings: UserSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(settings.to_dict(), indent=2, sort_keys=True)
        self._path.write_text(payload, encoding="utf-8")


@dataclass
class SelectionProfile:
    """Which catalog items a provisioning run should touch."""

    apps: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    tweaks: List[str] = field(default_factory=list)
    bloatware: List[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, List[str]]:
        return {
            "apps": list(self.apps),
            "services": list(self.services),
            "tweaks": list(self.tweaks),
            "bloatware": list(self.bloatware),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SelectionProfile":
        def _names(key: str) -> List[str]:
            value = data.get(key) or []
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, Iterable):
                return []
            return [str(item).strip() for item in value if str(item).strip()]

        return cls(
            apps=_names("apps"),
            services=_names("services"),
            tweaks=_names("tweaks"),
            bloatware=_names("bloatware"),
        )


class ProfileStore:
    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SelectionProfile:
        data = json.loads(self._path.read_text(encoding="utf-8-sig"))
        if not isinstance(data, dict):
            raise ValueError(f"Profile {self._path} must contain a JSON object")
        return SelectionProfile.from_dict(data)

    def save(self, profile: SelectionProfile) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(profile.to_dict(), indent=2)
        self._path.write_text(payload, encoding="utf-8")
