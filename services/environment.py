"""Environment refresh after installers change the machine or user PATH."""
from __future__ import annotations

import logging
import os

try:  # Windows-only dependency, optional for non-Windows hosts
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

logger = logging.getLogger(__name__)

_MACHINE_ENV_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
_USER_ENV_KEY = "Environment"


def _read_path_value(hive, subkey: str) -> str:
    try:
        with winreg.OpenKey(hive, subkey) as key:  # type: ignore[union-attr]
            value, _ = winreg.QueryValueEx(key, "Path")  # type: ignore[union-attr]
    except OSError:
        return ""
    return os.path.expandvars(str(value or ""))


def merge_path_entries(*values: str) -> str:
    """Join PATH strings, keeping the first occurrence of each entry."""
    seen: set[str] = set()
    merged: list[str] = []
    for value in values:
        for entry in value.split(os.pathsep):
            cleaned = entry.strip()
            if not cleaned:
                continue
            key = os.path.normcase(cleaned.rstrip("\\/"))
            if key in seen:
                continue
            seen.add(key)
            merged.append(cleaned)
    return os.pathsep.join(merged)


def refresh_path() -> bool:
    """Reload PATH from the machine and user registry values into this process.

    Returns False when the registry is unavailable; safe to call repeatedly.
    """
    if winreg is None:
        return False
    machine = _read_path_value(winreg.HKEY_LOCAL_MACHINE, _MACHINE_ENV_KEY)
    user = _read_path_value(winreg.HKEY_CURRENT_USER, _USER_ENV_KEY)
    if not machine and not user:
        return False
    os.environ["PATH"] = merge_path_entries(machine, user, os.environ.get("PATH", ""))
    logger.debug("PATH refreshed from registry")
    return True
