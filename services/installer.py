"""Application installation engine: winget first, then direct download."""
from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence, Tuple

from services.downloads import download_file, safe_name
from services.environment import refresh_path
from services.resolver import DownloadResolver, ResolutionFailed, ResolvedDownload
from services.run_log import RunLog
from services.verifier import InstallationVerifier, VerificationHints
from services.winget import CommandExecutionResult, WingetClient, WingetError, is_hash_mismatch
from winprovision.app_catalog import ApplicationSpec, DirectDownload, InstallerKind
from winprovision.paths import get_scratch_directory
from winprovision.user_settings import UserSettings

logger = logging.getLogger(__name__)

VERIFICATION_FAILED_DETAIL = "verification failed"


class InstallMethod(Enum):
    PACKAGE_MANAGER = "PackageManager"
    DIRECT_DOWNLOAD = "DirectDownload"
    ALREADY_INSTALLED = "AlreadyInstalled"
    NONE = "None"


class InstallFailure(str, Enum):
    NO_INSTALL_METHOD = "NoInstallMethodAvailable"
    PACKAGE_MANAGER_FAILED = "PackageManagerFailed"
    RESOLUTION_FAILED = "ResolutionFailed"
    DOWNLOAD_FAILED = "DownloadFailed"
    INSTALLER_LAUNCH_FAILED = "InstallerLaunchFailed"
    INSTALLER_TIMED_OUT = "InstallerTimedOut"
    UNSUPPORTED_INSTALLER = "UnsupportedInstallerType"
    VERIFICATION_FAILED = "VerificationFailed"
    CANCELLED = "Cancelled"
    UNEXPECTED_ERROR = "UnexpectedError"


@dataclass(frozen=True)
class MethodOutcome:
    """Package-manager result with both success signals kept separate.

    winget's exit code is occasionally wrong, so a "Successfully installed"
    line in its output also counts as success.
    """

    exit_code: int | None
    matched_success_text: bool

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 or self.matched_success_text


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class InstallAttemptResult:
    app_name: str
    method_used: InstallMethod
    succeeded: bool
    error_detail: str | None = None
    failure: InstallFailure | None = None
    timestamp_utc: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class EngineConfig:
    installer_timeout: float = 300.0
    network_timeout: float = 15.0
    scratch_root: Path = field(default_factory=get_scratch_directory)
    direct_download_only: bool = False
    allow_hash_bypass: bool = True
    success_phrases: Tuple[str, ...] = ("Successfully installed",)
    default_exe_arguments: str = "/S"
    default_msi_arguments: str = "/quiet /norestart"
    poll_interval: float = 0.5

    @classmethod
    def from_settings(cls, settings: UserSettings) -> "EngineConfig":
        scratch = Path(settings.scratch_dir) if settings.scratch_dir.strip() else get_scratch_directory()
        return cls(
            installer_timeout=settings.installer_timeout_seconds,
            network_timeout=settings.network_timeout_seconds,
            scratch_root=scratch,
            direct_download_only=settings.direct_download_only,
            allow_hash_bypass=settings.allow_hash_bypass,
        )


class ProcessHandle(Protocol):
    def poll(self) -> int | None:  # pragma: no cover - protocol
        ...

    def kill(self) -> None:  # pragma: no cover - protocol
        ...

    def wait(self, timeout: float | None = None) -> int:  # pragma: no cover - protocol
        ...


ProcessLauncher = Callable[[Sequence[str]], ProcessHandle]
FileDownloader = Callable[[str, Path, float], None]


class _PhaseFailure(Exception):
    def __init__(self, failure: InstallFailure, detail: str = "") -> None:
        super().__init__(detail or failure.value)
        self.failure = failure
        self.detail = detail


def _launch_process(command: Sequence[str]) -> ProcessHandle:
    return subprocess.Popen(
        list(command),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


def _download(url: str, destination: Path, timeout: float) -> None:
    download_file(url, destination, timeout=timeout)


def _is_cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _error_detail(failure: InstallFailure, detail: str) -> str:
    return f"{failure.value}: {detail}" if detail else failure.value


def split_arguments(arguments: str) -> list[str]:
    """Split a Windows argument string; quotes group, backslashes stay literal."""
    lexer = shlex.shlex(arguments, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    lexer.escape = ""
    return list(lexer)


class InstallEngine:
    """Installs one application per call and always returns a result.

    Phases run in order and the first success wins: already-installed check,
    winget install, direct download + installer + verification. Failures
    inside a phase fall through to the next phase; nothing is raised to the
    caller.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        winget_client: WingetClient | None = None,
        resolver: DownloadResolver | None = None,
        verifier: InstallationVerifier | None = None,
        launch_process: ProcessLauncher | None = None,
        download_file: FileDownloader | None = None,
        refresh_environment: Callable[[], object] | None = None,
        run_log: RunLog | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._winget = winget_client or WingetClient(timeout=self._config.installer_timeout)
        self._resolver = resolver or DownloadResolver(timeout=self._config.network_timeout)
        self._verifier = verifier or InstallationVerifier(self._winget)
        self._launch = launch_process or _launch_process
        self._download_file = download_file or _download
        self._refresh_environment = refresh_environment or refresh_path
        self._run_log = run_log if run_log is not None else RunLog()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def run_log(self) -> RunLog:
        return self._run_log

    def install(self, spec: ApplicationSpec, cancel: threading.Event | None = None) -> InstallAttemptResult:
        logger.info("Installing %s", spec.name)
        try:
            result = self._install(spec, cancel)
        except Exception as exc:
            logger.exception("Unexpected error while installing %s", spec.name)
            result = self._failed(spec, InstallMethod.NONE, InstallFailure.UNEXPECTED_ERROR, str(exc))
        self._run_log.append(result)
        return result

    def is_installed(self, spec: ApplicationSpec) -> bool:
        return self._verifier.is_installed(spec.name, VerificationHints.for_spec(spec))

    def _install(self, spec: ApplicationSpec, cancel: threading.Event | None) -> InstallAttemptResult:
        if _is_cancelled(cancel):
            return self._failed(spec, InstallMethod.NONE, InstallFailure.CANCELLED)
        use_winget = self._package_manager_usable(spec)
        if not use_winget and spec.direct_download is None:
            logger.error("%s: no usable install method (winget unavailable, no direct download)", spec.name)
            return self._failed(spec, InstallMethod.NONE, InstallFailure.NO_INSTALL_METHOD)

        if self._verified(spec.name, VerificationHints.for_spec(spec)):
            logger.info("%s is already installed", spec.name)
            return InstallAttemptResult(spec.name, InstallMethod.ALREADY_INSTALLED, True)

        last_method = InstallMethod.NONE
        last_failure = InstallFailure.NO_INSTALL_METHOD
        last_detail = ""
        if use_winget:
            outcome, detail = self._package_manager_phase(spec)
            if outcome.succeeded:
                logger.info("%s installed via winget", spec.name)
                return InstallAttemptResult(spec.name, InstallMethod.PACKAGE_MANAGER, True)
            logger.warning("%s: winget install failed (%s)", spec.name, detail)
            last_method = InstallMethod.PACKAGE_MANAGER
            last_failure = InstallFailure.PACKAGE_MANAGER_FAILED
            last_detail = detail
            if _is_cancelled(cancel):
                return self._failed(spec, last_method, InstallFailure.CANCELLED, "cancelled after winget install")
        elif spec.package_manager_id:
            logger.info("%s: skipping winget phase", spec.name)

        if spec.direct_download is not None:
            if _is_cancelled(cancel):
                return self._failed(spec, last_method, InstallFailure.CANCELLED)
            try:
                return self._direct_download_phase(spec, spec.direct_download, cancel)
            except _PhaseFailure as exc:
                logger.error("%s: direct download phase failed: %s", spec.name, exc)
                if exc.failure is InstallFailure.CANCELLED:
                    return self._failed(spec, InstallMethod.DIRECT_DOWNLOAD, exc.failure, exc.detail)
                last_method = InstallMethod.DIRECT_DOWNLOAD
                last_failure = exc.failure
                last_detail = exc.detail
        return self._failed(spec, last_method, last_failure, last_detail)

    def _verified(self, app_name: str, hints: VerificationHints) -> bool:
        try:
            return self._verifier.is_installed(app_name, hints)
        except Exception as exc:
            logger.warning("%s: verification check failed: %s", app_name, exc)
            return False

    def _package_manager_usable(self, spec: ApplicationSpec) -> bool:
        if not spec.package_manager_id or self._config.direct_download_only:
            return False
        return self._winget.is_available()

    def _package_manager_phase(self, spec: ApplicationSpec) -> tuple[MethodOutcome, str]:
        package_id = spec.package_manager_id or ""
        try:
            result = self._winget.install_package(package_id)
            outcome = self._outcome(result)
            if not outcome.succeeded and self._config.allow_hash_bypass and is_hash_mismatch(result):
                logger.warning("%s: installer hash mismatch, retrying once with --ignore-security-hash", spec.name)
                result = self._winget.install_package(package_id, ignore_security_hash=True)
                outcome = self._outcome(result)
        except WingetError as exc:
            return MethodOutcome(exit_code=None, matched_success_text=False), str(exc)
        if outcome.succeeded:
            return outcome, ""
        text = result.stderr.strip() or result.stdout.strip()
        detail = f"exit code {result.returncode}"
        if text:
            detail = f"{detail}: {text.splitlines()[-1]}"
        return outcome, detail

    def _outcome(self, result: CommandExecutionResult) -> MethodOutcome:
        output = result.output.lower()
        matched = any(phrase.lower() in output for phrase in self._config.success_phrases)
        return MethodOutcome(exit_code=result.returncode, matched_success_text=matched)

    def _direct_download_phase(
        self, spec: ApplicationSpec, download: DirectDownload, cancel: threading.Event | None
    ) -> InstallAttemptResult:
        try:
            resolved = self._resolver.resolve_download(spec.name, download)
        except ResolutionFailed as exc:
            raise _PhaseFailure(InstallFailure.RESOLUTION_FAILED, str(exc)) from exc
        kind = resolved.kind
        if kind is None:
            raise _PhaseFailure(
                InstallFailure.UNSUPPORTED_INSTALLER,
                f"{resolved.extension or 'unknown'} installers are not supported",
            )
        installer_path = self._config.scratch_root / safe_name(spec.name) / resolved.filename
        logger.info("%s: downloading %s", spec.name, resolved.url)
        try:
            self._download_file(resolved.url, installer_path, self._config.network_timeout)
        except Exception as exc:
            logger.warning("Manual installation required for %s: download it from %s", spec.name, resolved.url)
            raise _PhaseFailure(InstallFailure.DOWNLOAD_FAILED, str(exc)) from exc
        try:
            if _is_cancelled(cancel):
                raise _PhaseFailure(InstallFailure.CANCELLED, "cancelled before installer launch")
            exit_code = self._run_installer(spec, kind, installer_path, resolved, cancel)
        finally:
            self._cleanup(installer_path)
        if exit_code not in (0, None):
            logger.info("%s: installer exited with code %s; verifying anyway", spec.name, exit_code)
        self._refresh_environment()
        hints = VerificationHints.for_spec(spec, resolved.verification_paths)
        if self._verified(spec.name, hints):
            logger.info("%s installed from direct download", spec.name)
            return InstallAttemptResult(spec.name, InstallMethod.DIRECT_DOWNLOAD, True)
        logger.warning("%s: installer finished but the installation could not be verified", spec.name)
        return InstallAttemptResult(
            spec.name,
            InstallMethod.DIRECT_DOWNLOAD,
            True,
            error_detail=VERIFICATION_FAILED_DETAIL,
            failure=InstallFailure.VERIFICATION_FAILED,
        )

    def installer_command(self, kind: InstallerKind, installer_path: Path, arguments: str = "") -> list[str]:
        if kind is InstallerKind.EXE:
            return [str(installer_path), *split_arguments(arguments or self._config.default_exe_arguments)]
        if kind is InstallerKind.MSI:
            return ["msiexec", "/i", str(installer_path), *split_arguments(arguments or self._config.default_msi_arguments)]
        return [
            "powershell",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            f"Add-AppxPackage -Path '{installer_path}'",
        ]

    def _run_installer(
        self,
        spec: ApplicationSpec,
        kind: InstallerKind,
        installer_path: Path,
        resolved: ResolvedDownload,
        cancel: threading.Event | None,
    ) -> int | None:
        command = self.installer_command(kind, installer_path, resolved.install_arguments)
        if kind is not InstallerKind.MSIXBUNDLE:
            return self._wait_for_process(command, cancel)
        try:
            exit_code = self._wait_for_process(command, cancel)
        except _PhaseFailure as exc:
            if exc.failure is not InstallFailure.INSTALLER_LAUNCH_FAILED:
                raise
            exit_code = None
            registration_error = exc.detail
        else:
            if exit_code == 0:
                return exit_code
            registration_error = f"exit code {exit_code}"
        logger.warning("%s: package registration failed (%s)", spec.name, registration_error)
        if spec.package_manager_id and self._winget.is_available():
            logger.info("%s: falling back to winget after package registration failure", spec.name)
            outcome, detail = self._package_manager_phase(spec)
            if outcome.succeeded:
                return 0
            logger.warning("%s: winget fallback failed (%s)", spec.name, detail)
        if exit_code is None:
            raise _PhaseFailure(InstallFailure.INSTALLER_LAUNCH_FAILED, registration_error)
        return exit_code

    def _wait_for_process(self, command: Sequence[str], cancel: threading.Event | None) -> int:
        if _is_cancelled(cancel):
            raise _PhaseFailure(InstallFailure.CANCELLED, "cancelled before installer launch")
        try:
            process = self._launch(command)
        except OSError as exc:
            raise _PhaseFailure(InstallFailure.INSTALLER_LAUNCH_FAILED, str(exc)) from exc
        timeout = self._config.installer_timeout
        deadline = time.monotonic() + timeout
        while True:
            exit_code = process.poll()
            if exit_code is not None:
                return exit_code
            if _is_cancelled(cancel):
                _kill(process)
                raise _PhaseFailure(InstallFailure.CANCELLED, "installer terminated after cancellation")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(process)
                raise _PhaseFailure(InstallFailure.INSTALLER_TIMED_OUT, f"installer still running after {timeout:g}s")
            delay = min(self._config.poll_interval, remaining)
            if cancel is not None:
                cancel.wait(delay)
            else:
                time.sleep(delay)

    def _cleanup(self, installer_path: Path) -> None:
        try:
            installer_path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.debug("Could not remove %s: %s", installer_path, exc)
            return
        try:
            installer_path.parent.rmdir()
        except OSError:
            pass

    def _failed(
        self,
        spec: ApplicationSpec,
        method: InstallMethod,
        failure: InstallFailure,
        detail: str = "",
    ) -> InstallAttemptResult:
        return InstallAttemptResult(
            spec.name,
            method,
            False,
            error_detail=_error_detail(failure, detail),
            failure=failure,
        )


def _kill(process: ProcessHandle) -> None:
    try:
        process.kill()
    except OSError:
        return
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Installer process did not exit after kill")


def create_engine(
    apps: Iterable[ApplicationSpec],
    config: EngineConfig | None = None,
    *,
    winget_client: WingetClient | None = None,
    run_log: RunLog | None = None,
) -> InstallEngine:
    """Wire an engine whose resolver knows the given catalog entries."""
    config = config or EngineConfig()
    winget = winget_client or WingetClient(timeout=config.installer_timeout)
    return InstallEngine(
        config,
        winget_client=winget,
        resolver=DownloadResolver(apps, timeout=config.network_timeout),
        verifier=InstallationVerifier(winget),
        run_log=run_log,
    )
