"""Append-only record of installation outcomes for one provisioning run."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:  # pragma: no cover - typing only
    from services.installer import InstallAttemptResult

logger = logging.getLogger(__name__)


class RunLog:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: List["InstallAttemptResult"] = []

    def append(self, result: "InstallAttemptResult") -> None:
        with self._lock:
            self._results.append(result)
        level = logging.INFO if result.succeeded else logging.ERROR
        logger.log(level, "%s", format_result(result))

    @property
    def results(self) -> tuple["InstallAttemptResult", ...]:
        with self._lock:
            return tuple(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def summary_lines(self) -> list[str]:
        return [format_result(result) for result in self.results]

    def save(self, path: Path) -> bool:
        """Append the summary to ``path``; a write failure is logged, never raised."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                for line in self.summary_lines():
                    handle.write(line + "\n")
        except OSError as exc:
            logger.warning("Could not write run summary to %s: %s", path, exc)
            return False
        return True


def format_result(result: "InstallAttemptResult") -> str:
    status = "OK" if result.succeeded else "FAIL"
    stamp = result.timestamp_utc.strftime("%Y-%m-%dT%H:%M:%SZ")
    line = f"{stamp} [{status}] {result.app_name} via {result.method_used.value}"
    if result.error_detail:
        line = f"{line} ({result.error_detail})"
    return line
