"""winget command-line wrapper and App Installer bootstrap."""
from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

APP_INSTALLER_URL = "https://aka.ms/getwinget"
NOT_INSTALLED_TEXT = "No installed package found"
HASH_MISMATCH_PATTERN = re.compile(r"installer hash does not match", re.IGNORECASE)


@dataclass
class CommandExecutionResult:
    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class WingetError(RuntimeError):
    pass


class WingetClient:
    """Thin wrapper around the winget CLI."""

    VERSION_PATTERN = re.compile(r"Version\s*:\s*(.+)", re.IGNORECASE)

    def __init__(self, executable: str | None = None, *, timeout: float | None = None):
        exe_path = executable or shutil.which("winget")
        if not exe_path:
            fallback = self._find_winget_fallback()
            exe_path = str(fallback) if fallback else None
        self._executable = Path(exe_path) if exe_path else None
        self._timeout = timeout

    @property
    def timeout(self) -> float | None:
        return self._timeout

    def is_available(self) -> bool:
        return self._executable is not None

    def refresh(self) -> bool:
        """Look the executable up again, e.g. after a bootstrap."""
        exe_path = shutil.which("winget") or self._find_winget_fallback()
        self._executable = Path(exe_path) if exe_path else None
        return self.is_available()

    def install_package(
        self,
        package_id: str,
        *,
        source: str | None = None,
        override: str | None = None,
        silent: bool = True,
        ignore_security_hash: bool = False,
    ) -> CommandExecutionResult:
        cmd = self._build_base_command("install", package_id, source)
        if silent:
            cmd.extend(["--silent", "--disable-interactivity"])
        if ignore_security_hash:
            cmd.append("--ignore-security-hash")
        if override:
            cmd.extend(["--override", override])
        return self._run(cmd)

    def list_package(self, package_id: str, *, source: str | None = None) -> CommandExecutionResult:
        if not self._executable:
            raise WingetError("winget executable not found in PATH")
        cmd = [str(self._executable), "list", "--id", package_id, "--exact", "--accept-source-agreements"]
        if source:
            cmd.extend(["--source", source])
        return self._run(cmd)

    def is_package_installed(self, package_id: str) -> bool:
        result = self.list_package(package_id)
        if not result.succeeded:
            return False
        if NOT_INSTALLED_TEXT.lower() in result.output.lower():
            return False
        return package_id.lower() in result.stdout.lower()

    def show_package_version(self, package_id: str, *, source: str | None = None) -> str | None:
        if not self._executable:
            raise WingetError("winget executable not found in PATH")
        cmd = [str(self._executable), "show", "--id", package_id, "--exact", "--accept-source-agreements"]
        if source:
            cmd.extend(["--source", source])
        result = self._run(cmd)
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            match = self.VERSION_PATTERN.search(line)
            if match:
                return match.group(1).strip()
        return None

    def _build_base_command(self, verb: str, package_id: str, source: str | None) -> list[str]:
        if not self._executable:
            raise WingetError("winget executable not found in PATH")
        cmd = [str(self._executable), verb, "--id", package_id, "--exact"]
        cmd.extend(["--accept-package-agreements", "--accept-source-agreements"])
        if source:
            cmd.extend(["--source", source])
        return cmd

    def _run(self, cmd: list[str]) -> CommandExecutionResult:
        logger.debug("Running %s", " ".join(cmd))
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise WingetError(f"winget {cmd[1]} timed out after {exc.timeout}s") from exc
        except OSError as exc:
            raise WingetError(f"winget could not be started: {exc}") from exc
        return CommandExecutionResult(cmd, completed.returncode, completed.stdout or "", completed.stderr or "")

    def _find_winget_fallback(self) -> Path | None:
        local_appdata = os.environ.get("LOCALAPPDATA")
        if local_appdata:
            candidate = Path(local_appdata) / "Microsoft" / "WindowsApps" / "winget.exe"
            if candidate.exists():
                return candidate
        program_files = os.environ.get("ProgramFiles")
        if program_files:
            base = Path(program_files) / "WindowsApps"
            try:
                candidates = list(base.glob("Microsoft.DesktopAppInstaller_*_x64__8wekyb3d8bbwe/winget.exe"))
            except OSError:
                candidates = []
            for candidate in candidates:
                if candidate.exists():
                    return candidate
        return None


def is_hash_mismatch(result: CommandExecutionResult) -> bool:
    return bool(HASH_MISMATCH_PATTERN.search(result.output))


def bootstrap_winget(
    client: WingetClient,
    scratch_dir: Path,
    *,
    download_file: Callable[[str, Path], None],
    runner: Callable[[Sequence[str]], subprocess.CompletedProcess[str]] | None = None,
) -> bool:
    """Register the App Installer bundle when winget is missing.

    Returns True when winget is callable afterwards. Callers switch their
    engine to direct-download-only mode on False.
    """
    if client.is_available():
        return True
    bundle = scratch_dir / "winget" / "Microsoft.DesktopAppInstaller.msixbundle"
    logger.info("winget not found; downloading App Installer from %s", APP_INSTALLER_URL)
    try:
        download_file(APP_INSTALLER_URL, bundle)
    except Exception as exc:
        logger.warning("App Installer download failed: %s", exc)
        return False
    run = runner or _run_captured
    command = [
        "powershell",
        "-NoProfile",
        "-ExecutionPolicy",
        "Bypass",
        "-Command",
        f"Add-AppxPackage -Path '{bundle}'",
    ]
    try:
        completed = run(command)
    except OSError as exc:
        logger.warning("App Installer registration could not start: %s", exc)
        return False
    finally:
        try:
            bundle.unlink()
        except OSError:
            pass
    if completed.returncode != 0:
        logger.warning("App Installer registration failed: %s", (completed.stderr or completed.stdout).strip())
        return False
    available = client.refresh()
    if not available:
        logger.warning("winget still unavailable after App Installer registration")
    return available


def _run_captured(command: Sequence[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, capture_output=True, text=True, check=False)
