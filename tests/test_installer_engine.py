from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Callable, Sequence

import pytest

import services.winget as winget_module
from services.downloads import DownloadFailed
from services.installer import (
    VERIFICATION_FAILED_DETAIL,
    EngineConfig,
    InstallEngine,
    InstallFailure,
    InstallMethod,
    MethodOutcome,
    create_engine,
    split_arguments,
)
from services.resolver import DownloadResolver
from services.verifier import InstallationVerifier, UninstallEntry, VerificationHints
from services.winget import CommandExecutionResult, WingetClient
from winprovision.app_catalog import ApplicationSpec, DirectDownload, InstallerKind


class DummyWingetClient(WingetClient):
    def __init__(self, *, available: bool = True, install_results: Sequence[CommandExecutionResult] = ()) -> None:
        super().__init__(executable="winget")
        self._available = available
        self._install_results = list(install_results)
        self.installs: list[tuple[str, bool]] = []
        self.list_queries: list[str] = []
        self.on_install = None

    def is_available(self) -> bool:  # type: ignore[override]
        return self._available

    def install_package(
        self,
        package_id: str,
        *,
        source: str | None = None,
        override: str | None = None,
        silent: bool = True,
        ignore_security_hash: bool = False,
    ) -> CommandExecutionResult:  # type: ignore[override]
        self.installs.append((package_id, ignore_security_hash))
        if self.on_install:
            self.on_install()
        if self._install_results:
            return self._install_results.pop(0)
        return CommandExecutionResult(["winget", "install", package_id], 0, "", "")

    def list_package(self, package_id: str, *, source: str | None = None) -> CommandExecutionResult:  # type: ignore[override]
        self.list_queries.append(package_id)
        return CommandExecutionResult(["winget", "list", package_id], 0, "No installed package found matching input criteria.", "")


class FakeVerifier:
    def __init__(self, answers: Sequence[bool] = (), default: bool = False) -> None:
        self._answers = list(answers)
        self._default = default
        self.calls: list[tuple[str, VerificationHints | None]] = []

    def is_installed(self, app_name: str, hints: VerificationHints | None = None) -> bool:
        self.calls.append((app_name, hints))
        if self._answers:
            return self._answers.pop(0)
        return self._default


class FakeProcess:
    def __init__(self, exit_code: int | None = 0) -> None:
        self._exit_code = exit_code
        self.killed = False

    def poll(self) -> int | None:
        if self.killed:
            return -9
        return self._exit_code

    def kill(self) -> None:
        self.killed = True

    def wait(self, timeout: float | None = None) -> int:
        return -9 if self.killed else (self._exit_code or 0)


class FakeLauncher:
    def __init__(
        self,
        exit_codes: dict[str, int | None] | None = None,
        default: int | None = 0,
        on_launch: Callable[[], None] | None = None,
    ) -> None:
        self._exit_codes = exit_codes or {}
        self._default = default
        self._on_launch = on_launch
        self.commands: list[list[str]] = []
        self.processes: list[FakeProcess] = []

    def __call__(self, command: Sequence[str]) -> FakeProcess:
        self.commands.append(list(command))
        process = FakeProcess(self._exit_codes.get(command[0], self._default))
        self.processes.append(process)
        if self._on_launch:
            self._on_launch()
        return process


class FakeDownloader:
    def __init__(self, error: Exception | None = None) -> None:
        self._error = error
        self.calls: list[tuple[str, Path]] = []

    def __call__(self, url: str, destination: Path, timeout: float) -> None:
        self.calls.append((url, destination))
        if self._error:
            raise self._error
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"installer")


def _spec(name: str = "Sample", *, package_id: str | None = None, extension: str | None = ".exe", args: str = "") -> ApplicationSpec:
    download = None
    if extension is not None:
        download = DirectDownload(
            url=f"https://downloads.example.com/{name.lower()}/setup{extension}",
            extension=extension,
            install_arguments=args,
        )
    return ApplicationSpec(name=name, package_manager_id=package_id, direct_download=download)


def _engine(
    tmp_path: Path,
    *,
    winget: DummyWingetClient | None = None,
    verifier=None,
    launcher: FakeLauncher | None = None,
    downloader: FakeDownloader | None = None,
    **config_overrides,
) -> InstallEngine:
    config = EngineConfig(scratch_root=tmp_path / "scratch", poll_interval=0.01, **config_overrides)
    return InstallEngine(
        config,
        winget_client=winget or DummyWingetClient(available=False),
        resolver=DownloadResolver(fetch_json=lambda url, timeout: pytest.fail("no release lookups expected")),
        verifier=verifier or FakeVerifier(),
        launch_process=launcher or FakeLauncher(),
        download_file=downloader or FakeDownloader(),
        refresh_environment=lambda: None,
    )


def test_package_manager_exit_zero_without_success_text(tmp_path: Path) -> None:
    winget = DummyWingetClient()
    verifier = InstallationVerifier(winget, uninstall_source=_NoUninstallEntries(), which=lambda _cmd: None)
    downloader = FakeDownloader()
    engine = _engine(tmp_path, winget=winget, verifier=verifier, downloader=downloader)

    result = engine.install(ApplicationSpec(name="Sample", package_manager_id="Vendor.Sample"))

    assert result.succeeded
    assert result.method_used is InstallMethod.PACKAGE_MANAGER
    assert result.error_detail is None
    assert winget.list_queries == ["Vendor.Sample"]
    assert winget.installs == [("Vendor.Sample", False)]
    assert downloader.calls == []


def test_missing_manager_and_no_download_fails_without_io(tmp_path: Path) -> None:
    winget = DummyWingetClient(available=False)
    verifier = FakeVerifier()
    launcher = FakeLauncher()
    downloader = FakeDownloader()
    engine = _engine(tmp_path, winget=winget, verifier=verifier, launcher=launcher, downloader=downloader)

    result = engine.install(ApplicationSpec(name="Sample", package_manager_id="Vendor.Sample"))

    assert not result.succeeded
    assert result.error_detail == "NoInstallMethodAvailable"
    assert result.failure is InstallFailure.NO_INSTALL_METHOD
    assert verifier.calls == []
    assert launcher.commands == []
    assert downloader.calls == []
    assert not (tmp_path / "scratch").exists()


def test_already_installed_is_idempotent(tmp_path: Path) -> None:
    winget = DummyWingetClient()
    launcher = FakeLauncher()
    downloader = FakeDownloader()
    engine = _engine(tmp_path, winget=winget, verifier=FakeVerifier(default=True), launcher=launcher, downloader=downloader)
    spec = _spec(package_id="Vendor.Sample")

    first = engine.install(spec)
    second = engine.install(spec)

    assert first.method_used is second.method_used is InstallMethod.ALREADY_INSTALLED
    assert first.succeeded and second.succeeded
    assert winget.installs == []
    assert launcher.commands == []
    assert downloader.calls == []
    assert len(engine.run_log) == 2


def test_missing_manager_falls_back_to_direct_download(tmp_path: Path) -> None:
    winget = DummyWingetClient(available=False)
    launcher = FakeLauncher()
    downloader = FakeDownloader()
    verifier = FakeVerifier(answers=[False, True])
    engine = _engine(tmp_path, winget=winget, verifier=verifier, launcher=launcher, downloader=downloader)

    result = engine.install(_spec(package_id="Vendor.Sample"))

    assert result.succeeded
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert result.error_detail is None
    assert winget.installs == []
    assert len(downloader.calls) == 1
    assert len(launcher.commands) == 1


def test_failed_package_manager_falls_back_to_direct_download(tmp_path: Path) -> None:
    failure = CommandExecutionResult(["winget"], 1, "", "Installer failed with exit code: 1603")
    winget = DummyWingetClient(install_results=[failure])
    downloader = FakeDownloader()
    engine = _engine(tmp_path, winget=winget, verifier=FakeVerifier(answers=[False, True]), downloader=downloader)

    result = engine.install(_spec(package_id="Vendor.Sample"))

    assert result.succeeded
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert winget.installs == [("Vendor.Sample", False)]
    assert len(downloader.calls) == 1


def test_direct_download_only_skips_package_manager(tmp_path: Path) -> None:
    winget = DummyWingetClient()
    engine = _engine(
        tmp_path,
        winget=winget,
        verifier=FakeVerifier(answers=[False, True]),
        direct_download_only=True,
    )

    result = engine.install(_spec(package_id="Vendor.Sample"))

    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert winget.installs == []


def test_success_text_counts_despite_nonzero_exit(tmp_path: Path) -> None:
    winget = DummyWingetClient(
        install_results=[CommandExecutionResult(["winget"], -1978335189, "Successfully installed", "")]
    )
    engine = _engine(tmp_path, winget=winget)

    result = engine.install(_spec(package_id="Vendor.Sample", extension=None))

    assert result.succeeded
    assert result.method_used is InstallMethod.PACKAGE_MANAGER


@pytest.mark.parametrize(
    ("exit_code", "matched", "expected"),
    [(0, False, True), (1, True, True), (1, False, False), (None, False, False)],
)
def test_method_outcome_signals(exit_code: int | None, matched: bool, expected: bool) -> None:
    assert MethodOutcome(exit_code=exit_code, matched_success_text=matched).succeeded is expected


def test_hash_mismatch_retries_once_with_bypass(tmp_path: Path) -> None:
    mismatch = CommandExecutionResult(["winget"], 1, "Installer hash does not match; this cannot be overridden", "")
    ok = CommandExecutionResult(["winget"], 0, "Successfully installed", "")
    winget = DummyWingetClient(install_results=[mismatch, ok])
    engine = _engine(tmp_path, winget=winget)

    result = engine.install(_spec(package_id="Vendor.Sample", extension=None))

    assert result.succeeded
    assert winget.installs == [("Vendor.Sample", False), ("Vendor.Sample", True)]


def test_hash_bypass_can_be_disabled(tmp_path: Path) -> None:
    mismatch = CommandExecutionResult(["winget"], 1, "Installer hash does not match", "")
    winget = DummyWingetClient(install_results=[mismatch])
    engine = _engine(tmp_path, winget=winget, allow_hash_bypass=False)

    result = engine.install(_spec(package_id="Vendor.Sample", extension=None))

    assert not result.succeeded
    assert result.method_used is InstallMethod.PACKAGE_MANAGER
    assert result.failure is InstallFailure.PACKAGE_MANAGER_FAILED
    assert winget.installs == [("Vendor.Sample", False)]


def test_installer_that_never_exits_times_out(tmp_path: Path) -> None:
    launcher = FakeLauncher(default=None)
    engine = _engine(tmp_path, launcher=launcher, installer_timeout=0.05)

    result = engine.install(_spec())

    assert not result.succeeded
    assert result.failure is InstallFailure.INSTALLER_TIMED_OUT
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert result.error_detail.startswith("InstallerTimedOut")
    assert launcher.processes[0].killed
    assert not (tmp_path / "scratch" / "sample").exists()


def test_exe_uses_silent_switch_by_default(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, launcher=launcher, verifier=FakeVerifier(answers=[False, True]))

    engine.install(_spec(extension=".exe"))

    command = launcher.commands[0]
    assert command[0].endswith("setup.exe")
    assert command[1:] == ["/S"]


def test_exe_uses_catalog_arguments(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, launcher=launcher, verifier=FakeVerifier(answers=[False, True]))

    engine.install(_spec(extension=".exe", args="/VERYSILENT /NORESTART"))

    assert launcher.commands[0][1:] == ["/VERYSILENT", "/NORESTART"]


def test_msi_runs_through_msiexec(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, launcher=launcher, verifier=FakeVerifier(answers=[False, True]))

    engine.install(_spec(extension=".msi"))

    command = launcher.commands[0]
    assert command[:2] == ["msiexec", "/i"]
    assert command[2].endswith("setup.msi")
    assert command[3:] == ["/quiet", "/norestart"]


def test_msixbundle_is_registered_with_powershell(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, launcher=launcher, verifier=FakeVerifier(answers=[False, True]))

    result = engine.install(_spec(extension=".msixbundle"))

    command = launcher.commands[0]
    assert command[0] == "powershell"
    assert command[-1].startswith("Add-AppxPackage -Path '")
    assert command[-1].endswith("setup.msixbundle'")
    assert result.succeeded


def test_failed_msix_registration_falls_back_to_winget(tmp_path: Path) -> None:
    winget = DummyWingetClient(
        install_results=[
            CommandExecutionResult(["winget"], 1, "", "No applicable installer found"),
            CommandExecutionResult(["winget"], 0, "", ""),
        ]
    )
    launcher = FakeLauncher(exit_codes={"powershell": 1})
    engine = _engine(tmp_path, winget=winget, launcher=launcher, verifier=FakeVerifier(answers=[False, True]))

    result = engine.install(_spec(package_id="Vendor.Sample", extension=".msixbundle"))

    assert result.succeeded
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert len(winget.installs) == 2


def test_unsupported_extension_is_rejected_before_download(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    downloader = FakeDownloader()
    engine = _engine(tmp_path, launcher=launcher, downloader=downloader)

    result = engine.install(_spec(extension=".zip"))

    assert not result.succeeded
    assert result.failure is InstallFailure.UNSUPPORTED_INSTALLER
    assert downloader.calls == []
    assert launcher.commands == []


def test_installer_kind_is_resolved_at_construction() -> None:
    assert _spec(extension="MSI").direct_download.kind is InstallerKind.MSI
    assert _spec(extension=".zip").direct_download.kind is None


def test_unverified_install_is_soft_success(tmp_path: Path) -> None:
    engine = _engine(tmp_path, verifier=FakeVerifier(default=False))

    result = engine.install(_spec())

    assert result.succeeded
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert result.error_detail == VERIFICATION_FAILED_DETAIL
    assert result.failure is InstallFailure.VERIFICATION_FAILED


def test_nonzero_installer_exit_still_verifies(tmp_path: Path) -> None:
    launcher = FakeLauncher(default=3010)
    verifier = FakeVerifier(answers=[False, True])
    engine = _engine(tmp_path, launcher=launcher, verifier=verifier)

    result = engine.install(_spec())

    assert result.succeeded
    assert result.error_detail is None
    assert len(verifier.calls) == 2


def test_download_failure_is_reported(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, launcher=launcher, downloader=FakeDownloader(error=DownloadFailed("404")))

    result = engine.install(_spec())

    assert not result.succeeded
    assert result.failure is InstallFailure.DOWNLOAD_FAILED
    assert result.error_detail == "DownloadFailed: 404"
    assert launcher.commands == []


def test_launch_error_is_reported(tmp_path: Path) -> None:
    def _refuse(command: Sequence[str]) -> FakeProcess:
        raise PermissionError("access denied")

    engine = InstallEngine(
        EngineConfig(scratch_root=tmp_path, poll_interval=0.01),
        winget_client=DummyWingetClient(available=False),
        resolver=DownloadResolver(),
        verifier=FakeVerifier(),
        launch_process=_refuse,
        download_file=FakeDownloader(),
        refresh_environment=lambda: None,
    )

    result = engine.install(_spec())

    assert not result.succeeded
    assert result.failure is InstallFailure.INSTALLER_LAUNCH_FAILED


def test_cancelled_before_start_does_nothing(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    downloader = FakeDownloader()
    verifier = FakeVerifier()
    engine = _engine(tmp_path, verifier=verifier, launcher=launcher, downloader=downloader)
    cancel = threading.Event()
    cancel.set()

    result = engine.install(_spec(), cancel)

    assert not result.succeeded
    assert result.failure is InstallFailure.CANCELLED
    assert verifier.calls == []
    assert downloader.calls == []
    assert launcher.commands == []
    assert not (tmp_path / "scratch").exists()


def test_cancelled_during_package_manager_skips_direct_download(tmp_path: Path) -> None:
    cancel = threading.Event()
    winget = DummyWingetClient(install_results=[CommandExecutionResult(["winget"], 1, "", "")])
    winget.on_install = cancel.set
    downloader = FakeDownloader()
    engine = _engine(tmp_path, winget=winget, downloader=downloader)

    result = engine.install(_spec(package_id="Vendor.Sample"), cancel)

    assert result.failure is InstallFailure.CANCELLED
    assert downloader.calls == []


def test_cancel_stops_running_installer(tmp_path: Path) -> None:
    cancel = threading.Event()
    launcher = FakeLauncher(default=None, on_launch=cancel.set)
    engine = _engine(tmp_path, launcher=launcher, installer_timeout=30)

    result = engine.install(_spec(), cancel)

    assert result.failure is InstallFailure.CANCELLED
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert launcher.processes[0].killed


class ExplodingVerifier(FakeVerifier):
    """Answers from ``answers`` first, then raises."""

    def __init__(self, answers: Sequence[bool] = (), error: Exception | None = None) -> None:
        super().__init__(answers)
        self._error = error or PermissionError("access denied")

    def is_installed(self, app_name: str, hints: VerificationHints | None = None) -> bool:
        self.calls.append((app_name, hints))
        if self._answers:
            return self._answers.pop(0)
        raise self._error


def test_failing_presence_check_counts_as_not_installed(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, verifier=ExplodingVerifier(), launcher=launcher)

    result = engine.install(_spec())

    assert result.succeeded
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert result.failure is InstallFailure.VERIFICATION_FAILED
    assert len(launcher.commands) == 1
    assert engine.run_log.results == (result,)


def test_failing_verification_after_install_is_soft_success(tmp_path: Path) -> None:
    launcher = FakeLauncher(default=0)
    verifier = ExplodingVerifier(answers=[False])
    engine = _engine(tmp_path, verifier=verifier, launcher=launcher)

    result = engine.install(_spec())

    assert result.succeeded
    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert result.failure is InstallFailure.VERIFICATION_FAILED
    assert result.error_detail == VERIFICATION_FAILED_DETAIL
    assert len(verifier.calls) == 2


def test_cancel_during_package_manager_without_download_is_cancelled(tmp_path: Path) -> None:
    cancel = threading.Event()
    winget = DummyWingetClient(install_results=[CommandExecutionResult(["winget"], 1, "", "")])
    winget.on_install = cancel.set
    engine = _engine(tmp_path, winget=winget)

    result = engine.install(ApplicationSpec(name="Sample", package_manager_id="Vendor.Sample"), cancel)

    assert not result.succeeded
    assert result.failure is InstallFailure.CANCELLED
    assert result.method_used is InstallMethod.PACKAGE_MANAGER


def test_engine_bounds_winget_calls_by_installer_timeout(tmp_path: Path) -> None:
    config = EngineConfig(installer_timeout=42, scratch_root=tmp_path)

    engine = create_engine([], config)

    assert engine._winget.timeout == 42
    assert InstallEngine(config)._winget.timeout == 42


@pytest.mark.skipif(sys.platform.startswith("win"), reason="uses a POSIX shell script as winget")
def test_hung_winget_is_timed_out_and_cancel_is_honoured(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    script = tmp_path / "winget"
    script.write_text("#!/bin/sh\nexec sleep 10\n")
    script.chmod(0o755)
    monkeypatch.setattr(winget_module.shutil, "which", lambda name: str(script) if name == "winget" else None)
    spec = ApplicationSpec(name="Sample", package_manager_id="Vendor.Sample")
    engine = create_engine([spec], EngineConfig(installer_timeout=1, scratch_root=tmp_path / "scratch"))
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)

    started = time.monotonic()
    timer.start()
    try:
        result = engine.install(spec, cancel)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 6
    assert result.failure is InstallFailure.CANCELLED


def test_store_alias_stub_does_not_count_as_installed(tmp_path: Path) -> None:
    stub = r"C:\Users\me\AppData\Local\Microsoft\WindowsApps\python.exe"
    verifier = InstallationVerifier(
        DummyWingetClient(available=False),
        uninstall_source=_NoUninstallEntries(),
        which=lambda command: stub if command == "python" else None,
    )
    launcher = FakeLauncher()
    engine = _engine(tmp_path, verifier=verifier, launcher=launcher)
    spec = ApplicationSpec(
        name="Python 3",
        command="python",
        direct_download=DirectDownload(url="https://example.com/python-3.12.5-amd64.exe", extension=".exe"),
    )

    result = engine.install(spec)

    assert result.method_used is InstallMethod.DIRECT_DOWNLOAD
    assert len(launcher.commands) == 1


@pytest.mark.parametrize(
    ("arguments", "expected"),
    [
        (r'/DIR="C:\Apps\X" /S', [r"/DIR=C:\Apps\X", "/S"]),
        (r'INSTALLDIR="C:\Program Files\X" /qn', [r"INSTALLDIR=C:\Program Files\X", "/qn"]),
        ("/VERYSILENT  /NORESTART", ["/VERYSILENT", "/NORESTART"]),
    ],
)
def test_windows_arguments_keep_backslashes(arguments: str, expected: list[str]) -> None:
    assert split_arguments(arguments) == expected


def test_catalog_arguments_with_paths_reach_the_installer(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    engine = _engine(tmp_path, launcher=launcher, verifier=FakeVerifier(answers=[False, True]))

    engine.install(_spec(extension=".msi", args=r'INSTALLDIR="C:\Program Files\Sample" /qn'))

    assert launcher.commands[0][3:] == [r"INSTALLDIR=C:\Program Files\Sample", "/qn"]


def test_verification_hints_include_catalog_paths(tmp_path: Path) -> None:
    spec = ApplicationSpec(
        name="Sample",
        command="sample",
        direct_download=DirectDownload(
            url="https://downloads.example.com/setup.exe",
            extension=".exe",
            verification_paths=(r"%ProgramFiles%\Sample\sample.exe",),
        ),
    )
    verifier = FakeVerifier(answers=[False, True])
    engine = _engine(tmp_path, verifier=verifier)

    engine.install(spec)

    hints = verifier.calls[-1][1]
    assert hints.verification_paths == (r"%ProgramFiles%\Sample\sample.exe",)
    assert hints.command == "sample"


class _NoUninstallEntries:
    def entries(self) -> list[UninstallEntry]:
        return []
