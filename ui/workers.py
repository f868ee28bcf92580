"""Utility classes for running provisioning tasks off the UI thread."""
from __future__ import annotations

import logging
import threading

from PySide6.QtCore import QObject, QRunnable, Signal, Slot

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    finished = Signal(object)
    error = Signal(str)
    message = Signal(str)
    progress = Signal(int, int, str)


class ServiceWorker(QRunnable):
    """Runs ``fn`` on the thread pool.

    With ``controlled=True`` the task also receives ``cancel`` (this worker's
    event) and ``progress_callback`` (emits ``signals.progress``).
    """

    def __init__(self, fn, *args, controlled: bool = False, **kwargs) -> None:
        super().__init__()
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.signals = WorkerSignals()
        self.cancel_event = threading.Event()
        if controlled:
            self.kwargs.setdefault("cancel", self.cancel_event)
            self.kwargs.setdefault("progress_callback", self.signals.progress.emit)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        logger.info("Cancellation requested")
        self.cancel_event.set()

    @Slot()
    def run(self) -> None:
        try:
            result = self.fn(*self.args, **self.kwargs)
        except Exception as exc:  # pragma: no cover - surfaced via signal
            logger.exception("Background task failed")
            self.signals.error.emit(str(exc))
        else:
            self.signals.finished.emit(result)
