"""Installed-state detection for catalog applications."""
from __future__ import annotations

import fnmatch
import logging
import ntpath
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Protocol, Sequence, Tuple

from services.winget import WingetClient
from winprovision.app_catalog import ApplicationSpec

try:  # Windows-only dependency, optional for non-Windows hosts
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

logger = logging.getLogger(__name__)

# Apps whose executable name differs from what a user would type.
COMMAND_ALIASES: dict[str, str] = {
    "7-zip": "7z",
    "git": "git",
    "google chrome": "chrome",
    "mozilla firefox": "firefox",
    "node.js lts": "node",
    "notepad++": "notepad++",
    "python 3": "python",
    "visual studio code": "code",
    "vlc media player": "vlc",
    "windows terminal": "wt",
}

_UNINSTALL_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
_WILDCARD_CHARS = re.compile(r"[*?\[]")
_PERCENT_VAR = re.compile(r"%([^%]+)%")
_PS_ENV_VAR = re.compile(r"\$env:([A-Za-z_][A-Za-z0-9_]*(?:\(x86\))?)", re.IGNORECASE)
_APP_ALIAS_DIR = re.compile(r"[\\/]microsoft[\\/]windowsapps[\\/][^\\/]+$", re.IGNORECASE)


@dataclass(frozen=True)
class VerificationHints:
    package_manager_id: str | None = None
    verification_paths: Tuple[str, ...] = ()
    display_name: str | None = None
    command: str | None = None

    @classmethod
    def for_spec(cls, spec: ApplicationSpec, extra_paths: Sequence[str] = ()) -> "VerificationHints":
        paths = tuple(dict.fromkeys([*spec.verification_paths, *extra_paths]))
        return cls(
            package_manager_id=spec.package_manager_id,
            verification_paths=paths,
            display_name=spec.display_name,
            command=spec.command,
        )


@dataclass(frozen=True)
class UninstallEntry:
    display_name: str
    display_version: str


class UninstallSource(Protocol):
    def entries(self) -> list[UninstallEntry]:  # pragma: no cover - protocol
        ...


class WindowsUninstallRegistry:
    """Reads DisplayName/DisplayVersion from the machine and user uninstall keys."""

    def entries(self) -> list[UninstallEntry]:
        if winreg is None:
            return []
        views = [getattr(winreg, "KEY_WOW64_64KEY", 0), getattr(winreg, "KEY_WOW64_32KEY", 0)]
        roots = [(winreg.HKEY_LOCAL_MACHINE, view) for view in views]
        roots.append((winreg.HKEY_CURRENT_USER, 0))
        found: dict[tuple[str, str], UninstallEntry] = {}
        for hive, view in roots:
            try:
                with winreg.OpenKey(hive, _UNINSTALL_KEY, 0, winreg.KEY_READ | view) as root:  # type: ignore[arg-type]
                    index = 0
                    while True:
                        try:
                            sub_name = winreg.EnumKey(root, index)
                        except OSError:
                            break
                        index += 1
                        try:
                            with winreg.OpenKey(root, sub_name) as subkey:
                                name = _reg_value(subkey, "DisplayName")
                                if not name:
                                    continue
                                entry = UninstallEntry(name, _reg_value(subkey, "DisplayVersion") or "")
                                found[(entry.display_name, entry.display_version)] = entry
                        except OSError:
                            continue
            except OSError:
                continue
        return list(found.values())


def _reg_value(key, value_name: str) -> str | None:
    try:
        value, _ = winreg.QueryValueEx(key, value_name)
    except OSError:
        return None
    if value is None:
        return None
    return str(value)


def expand_environment(pattern: str, environ: Mapping[str, str] | None = None) -> str:
    """Expand ``%VAR%`` and PowerShell-style ``$env:VAR`` references.

    Unknown variables are left untouched so the path simply fails to match.
    """
    env = environ if environ is not None else os.environ
    lowered = {key.lower(): value for key, value in env.items()}

    def _lookup(match: re.Match[str]) -> str:
        return lowered.get(match.group(1).lower(), match.group(0))

    expanded = _PERCENT_VAR.sub(_lookup, pattern)
    expanded = _PS_ENV_VAR.sub(_lookup, expanded)
    return os.path.expanduser(expanded)


def resolve_wildcard_path(pattern: str, environ: Mapping[str, str] | None = None) -> list[Path]:
    """Return existing paths matching ``pattern``, one path segment at a time.

    Segments containing ``*``, ``?`` or ``[`` are matched case-insensitively
    against directory listings, so versioned directories such as
    ``%LOCALAPPDATA%\\Discord\\app-*\\Discord.exe`` resolve to every
    installed version.
    """
    expanded = expand_environment(pattern.strip(), environ)
    if not expanded:
        return []
    root, segments = split_root(expanded)
    candidates = [Path(root) if root else Path.cwd()]
    for segment in segments:
        if _WILDCARD_CHARS.search(segment):
            candidates = _match_segment(candidates, segment)
        else:
            candidates = [candidate / segment for candidate in candidates]
        if not candidates:
            return []
    return [candidate for candidate in candidates if candidate.exists()]


def split_root(path: str) -> tuple[str, list[str]]:
    """Split ``path`` into its anchor (drive, UNC share or separator) and segments."""
    drive, rest = ntpath.splitdrive(path)
    segments = [segment for segment in re.split(r"[\\/]+", rest) if segment and segment != "."]
    if drive:
        return drive + os.sep, segments
    if rest[:1] in ("\\", "/"):
        return rest[0], segments
    return "", segments


def _match_segment(parents: Iterable[Path], segment: str) -> list[Path]:
    wanted = segment.lower()
    matches: list[Path] = []
    for parent in parents:
        try:
            children = sorted(parent.iterdir(), key=lambda child: child.name.lower())
        except OSError:
            continue
        matches.extend(child for child in children if fnmatch.fnmatchcase(child.name.lower(), wanted))
    return matches


class InstallationVerifier:
    """Decides whether an application is present, cheapest trusted check first.

    Order: winget query, uninstall entries, verification paths, command on
    PATH. A check that raises counts as a negative for that check only.
    """

    def __init__(
        self,
        winget_client: WingetClient | None = None,
        *,
        uninstall_source: UninstallSource | None = None,
        which: Callable[[str], str | None] | None = None,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self._winget = winget_client or WingetClient()
        self._uninstall = uninstall_source or WindowsUninstallRegistry()
        self._which = which or shutil.which
        self._aliases = {key.lower(): value for key, value in (aliases or COMMAND_ALIASES).items()}

    def is_installed(self, app_name: str, hints: VerificationHints | None = None) -> bool:
        hints = hints or VerificationHints()
        checks = (
            ("winget", lambda: self._check_package_manager(hints)),
            ("uninstall entries", lambda: self._check_uninstall_entries(app_name, hints)),
            ("verification paths", lambda: self._check_paths(hints)),
            ("command", lambda: self._check_command(app_name, hints)),
        )
        for label, check in checks:
            try:
                if check():
                    logger.debug("%s detected via %s", app_name, label)
                    return True
            except Exception as exc:
                logger.debug("%s: %s check failed: %s", app_name, label, exc)
        return False

    def _check_package_manager(self, hints: VerificationHints) -> bool:
        if not hints.package_manager_id or not self._winget.is_available():
            return False
        return self._winget.is_package_installed(hints.package_manager_id)

    def _check_uninstall_entries(self, app_name: str, hints: VerificationHints) -> bool:
        needle = (hints.display_name or app_name).strip().lower()
        if not needle:
            return False
        return any(needle in entry.display_name.lower() for entry in self._uninstall.entries())

    def _check_paths(self, hints: VerificationHints) -> bool:
        for pattern in hints.verification_paths:
            if resolve_wildcard_path(pattern):
                return True
        return False

    def _check_command(self, app_name: str, hints: VerificationHints) -> bool:
        command = hints.command or self._aliases.get(app_name.strip().lower())
        if not command:
            return False
        found = self._which(command)
        if not found:
            return False
        # Store app-execution aliases (python.exe stub) exist without the app.
        if _APP_ALIAS_DIR.search(found):
            logger.debug("%s: ignoring app execution alias %s", app_name, found)
            return False
        return True
