"""Retry and bounded-parallel wrappers around the installation engine."""
from __future__ import annotations

import ctypes
import logging
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Protocol, Sequence

from services.installer import InstallAttemptResult, InstallFailure
from winprovision.app_catalog import ApplicationSpec

logger = logging.getLogger(__name__)

_FINAL_FAILURES = frozenset(
    {
        InstallFailure.CANCELLED,
        InstallFailure.NO_INSTALL_METHOD,
        InstallFailure.UNSUPPORTED_INSTALLER,
        InstallFailure.RESOLUTION_FAILED,
    }
)

ProgressCallback = Callable[[int, int, str], None]

MAX_WORKERS = 4


class Installer(Protocol):
    def install(
        self, spec: ApplicationSpec, cancel: threading.Event | None = None
    ) -> InstallAttemptResult:  # pragma: no cover - protocol
        ...


class RetryingInstaller:
    """Re-runs the whole install sequence with exponential backoff.

    Holds no state between calls; attempts stop at the first success or at a
    failure another attempt would only repeat.
    """

    def __init__(
        self,
        installer: Installer,
        *,
        attempts: int = 3,
        base_delay: float = 2.0,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._installer = installer
        self._attempts = max(attempts, 1)
        self._base_delay = max(base_delay, 0.0)
        self._sleep = sleep

    def install(self, spec: ApplicationSpec, cancel: threading.Event | None = None) -> InstallAttemptResult:
        result = self._installer.install(spec, cancel)
        for attempt in range(1, self._attempts):
            if result.succeeded or result.failure in _FINAL_FAILURES:
                break
            delay = self._base_delay * (2 ** (attempt - 1))
            logger.info("%s: retrying in %.1fs (attempt %d/%d)", spec.name, delay, attempt + 1, self._attempts)
            if self._wait(delay, cancel):
                break
            result = self._installer.install(spec, cancel)
        return result

    def _wait(self, delay: float, cancel: threading.Event | None) -> bool:
        if self._sleep is not None:
            self._sleep(delay)
            return cancel is not None and cancel.is_set()
        if cancel is not None:
            return cancel.wait(delay)
        time.sleep(delay)
        return False


class _MemoryStatus(ctypes.Structure):
    _fields_ = [
        ("dwLength", ctypes.c_ulong),
        ("dwMemoryLoad", ctypes.c_ulong),
        ("ullTotalPhys", ctypes.c_ulonglong),
        ("ullAvailPhys", ctypes.c_ulonglong),
        ("ullTotalPageFile", ctypes.c_ulonglong),
        ("ullAvailPageFile", ctypes.c_ulonglong),
        ("ullTotalVirtual", ctypes.c_ulonglong),
        ("ullAvailVirtual", ctypes.c_ulonglong),
        ("sullAvailExtendedVirtual", ctypes.c_ulonglong),
    ]


def detect_memory_gb() -> float | None:
    if not sys.platform.startswith("win"):
        return None
    status = _MemoryStatus()
    status.dwLength = ctypes.sizeof(_MemoryStatus)
    try:
        if not ctypes.windll.kernel32.GlobalMemoryStatusEx(ctypes.byref(status)):
            return None
    except AttributeError:
        return None
    return status.ullTotalPhys / (1024 ** 3)


def recommended_worker_count(cpu_count: int | None = None, memory_gb: float | None = None) -> int:
    """Pick 2-4 concurrent installers from CPU and RAM."""
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 2)
    workers = 2
    if cpus >= 8:
        workers = 4
    elif cpus >= 4:
        workers = 3
    if memory_gb is not None:
        if memory_gb < 8:
            workers = 2
        elif memory_gb < 16:
            workers = min(workers, 3)
    return workers


def install_batch(
    installer: Installer,
    specs: Sequence[ApplicationSpec] | Iterable[ApplicationSpec],
    *,
    cancel: threading.Event | None = None,
    max_workers: int = 1,
    progress_callback: ProgressCallback | None = None,
) -> list[InstallAttemptResult]:
    """Install every spec, at most ``max_workers`` at once, results in input order."""
    apps = list(specs)
    total = len(apps)
    max_workers = min(max_workers, MAX_WORKERS)
    if max_workers <= 1 or total <= 1:
        results: list[InstallAttemptResult] = []
        for index, spec in enumerate(apps, start=1):
            results.append(installer.install(spec, cancel))
            if progress_callback:
                progress_callback(index, total, spec.name)
        return results

    done = 0
    done_lock = threading.Lock()

    def _run(spec: ApplicationSpec) -> InstallAttemptResult:
        nonlocal done
        result = installer.install(spec, cancel)
        with done_lock:
            done += 1
            current = done
        if progress_callback:
            progress_callback(current, total, spec.name)
        return result

    logger.info("Installing %d application(s) with %d workers", total, max_workers)
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="installer") as pool:
        return list(pool.map(_run, apps))
