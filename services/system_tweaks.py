"""Service disabling, registry tweaks and bloatware removal."""
from __future__ import annotations

import logging
import re
import subprocess
import sys
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from winprovision.tweak_catalog import (
    WINDOWS_10,
    WINDOWS_11,
    BloatwarePackageDescriptor,
    RegistryTweakDescriptor,
    ServiceDescriptor,
)

try:  # Windows-only dependency, optional for test doubles
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

logger = logging.getLogger(__name__)

_SERVICE_NAME_LINE = re.compile(r"^\s*SERVICE_NAME:\s*(\S+)", re.IGNORECASE | re.MULTILINE)
_SERVICE_MISSING = 1060
_SERVICE_NOT_STARTED = 1062


@dataclass
class TweakResult:
    name: str
    success: bool
    message: str


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(list(command), capture_output=True, text=True, check=False)


class RegistryAccessor(Protocol):
    def get_value(self, path: str, value_name: str) -> str | int | None:  # pragma: no cover - protocol
        ...

    def set_value(self, path: str, value_name: str, value: str | int) -> None:  # pragma: no cover - protocol
        ...


class WindowsRegistryAccessor:
    """Minimal registry helper backed by winreg."""

    def __init__(self) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")

    def get_value(self, path: str, value_name: str) -> str | int | None:
        hive, subkey = self._split_path(path)
        try:
            with winreg.OpenKey(hive, subkey) as key:  # type: ignore[arg-type]
                value, _ = winreg.QueryValueEx(key, value_name)
                return value
        except FileNotFoundError:
            return None

    def set_value(self, path: str, value_name: str, value: str | int) -> None:
        hive, subkey = self._split_path(path)
        value_type = winreg.REG_DWORD if isinstance(value, int) else winreg.REG_SZ
        with winreg.CreateKeyEx(hive, subkey) as key:  # type: ignore[arg-type]
            winreg.SetValueEx(key, value_name, 0, value_type, value)

    def _split_path(self, path: str) -> tuple[object, str]:
        cleaned = path.replace("/", "\\")
        marker = ":\\"
        if marker not in cleaned:
            raise ValueError(f"Invalid registry path: {path}")
        hive_name, subkey = cleaned.split(marker, 1)
        subkey = subkey.lstrip("\\")
        hive_map = {
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKCR": winreg.HKEY_CLASSES_ROOT,
            "HKU": winreg.HKEY_USERS,
            "HKCC": winreg.HKEY_CURRENT_CONFIG,
        }
        try:
            hive = hive_map[hive_name.upper()]
        except KeyError as exc:
            raise ValueError(f"Unsupported hive: {hive_name}") from exc
        return hive, subkey


def detect_os_release(build: int | None = None) -> str:
    if build is None:
        getter = getattr(sys, "getwindowsversion", None)
        build = getter().build if getter else 0
    return WINDOWS_11 if build >= 22000 else WINDOWS_10


class SystemTweaksService:
    """Runs one pass over a fixed list; one item failing never stops the rest."""

    def __init__(
        self,
        *,
        command_runner: CommandRunner | None = None,
        registry: RegistryAccessor | None = None,
    ) -> None:
        self._runner = command_runner or SubprocessRunner()
        self._registry = registry

    def disable_services(self, services: Iterable[ServiceDescriptor]) -> list[TweakResult]:
        selected = list(services)
        selected_names = {service.name.lower() for service in selected}
        results: list[TweakResult] = []
        for service in selected:
            try:
                results.append(self._disable_service(service, selected_names))
            except OSError as exc:
                results.append(TweakResult(service.name, False, f"Service control failed: {exc}"))
        for result in results:
            self._log_result("service", result)
        return results

    def apply_registry_tweaks(self, tweaks: Iterable[RegistryTweakDescriptor]) -> list[TweakResult]:
        results: list[TweakResult] = []
        for tweak in tweaks:
            try:
                self._registry_accessor().set_value(tweak.path, tweak.value_name, tweak.value)
            except (OSError, ValueError, RuntimeError) as exc:
                result = TweakResult(tweak.name, False, f"Registry write failed: {exc}")
            else:
                result = TweakResult(tweak.name, True, f"{tweak.path}\\{tweak.value_name or '(Default)'} = {tweak.value}")
            self._log_result("tweak", result)
            results.append(result)
        return results

    def check_registry_tweaks(self, tweaks: Iterable[RegistryTweakDescriptor]) -> list[TweakResult]:
        results: list[TweakResult] = []
        for tweak in tweaks:
            try:
                actual = self._registry_accessor().get_value(tweak.path, tweak.value_name)
            except (OSError, ValueError, RuntimeError) as exc:
                results.append(TweakResult(tweak.name, False, f"Registry read failed: {exc}"))
                continue
            actual_str = "Not Set" if actual is None else str(actual)
            results.append(TweakResult(tweak.name, actual == tweak.value, f"{actual_str} (target: {tweak.value})"))
        return results

    def remove_bloatware(self, packages: Iterable[BloatwarePackageDescriptor]) -> list[TweakResult]:
        results: list[TweakResult] = []
        for package in packages:
            command = _powershell(
                f"Get-AppxPackage -AllUsers -Name '{package.pattern}' | "
                "Remove-AppxPackage -AllUsers -ErrorAction SilentlyContinue; "
                "Get-AppxProvisionedPackage -Online | "
                f"Where-Object {{ $_.DisplayName -like '{package.pattern}' }} | "
                "Remove-AppxProvisionedPackage -Online -ErrorAction SilentlyContinue | Out-Null"
            )
            try:
                completed = self._runner.run(command)
            except OSError as exc:
                result = TweakResult(package.name, False, f"PowerShell failed to start: {exc}")
            else:
                if completed.returncode == 0:
                    result = TweakResult(package.name, True, f"Removed {package.pattern}")
                else:
                    result = TweakResult(package.name, False, _first_line(completed) or "Removal failed")
            self._log_result("bloatware", result)
            results.append(result)
        return results

    def _disable_service(self, service: ServiceDescriptor, selected_names: set[str]) -> TweakResult:
        query = self._runner.run(["sc", "query", service.name])
        if query.returncode == _SERVICE_MISSING:
            return TweakResult(service.name, True, "Service not present")
        dependents = self._dependents(service.name)
        blocking = [name for name in dependents if name.lower() not in selected_names]
        if blocking:
            return TweakResult(service.name, False, f"Skipped: required by {', '.join(blocking)}")
        stop = self._runner.run(["sc", "stop", service.name])
        if stop.returncode not in (0, _SERVICE_NOT_STARTED):
            logger.debug("sc stop %s returned %s", service.name, stop.returncode)
        config = self._runner.run(["sc", "config", service.name, "start=", "disabled"])
        if config.returncode != 0:
            return TweakResult(service.name, False, _first_line(config) or f"sc config exit code {config.returncode}")
        return TweakResult(service.name, True, "Disabled")

    def _dependents(self, service_name: str) -> list[str]:
        completed = self._runner.run(["sc", "enumdepend", service_name])
        if completed.returncode != 0:
            return []
        return _SERVICE_NAME_LINE.findall(completed.stdout or "")

    def _registry_accessor(self) -> RegistryAccessor:
        if self._registry is None:
            self._registry = WindowsRegistryAccessor()
        return self._registry

    def _log_result(self, kind: str, result: TweakResult) -> None:
        level = logging.INFO if result.success else logging.WARNING
        logger.log(level, "%s %s: %s", kind, result.name, result.message)


def _powershell(script: str) -> list[str]:
    return ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script]


def _first_line(completed: subprocess.CompletedProcess[str]) -> str:
    text = (completed.stderr or "").strip() or (completed.stdout or "").strip()
    return text.splitlines()[0] if text else ""
