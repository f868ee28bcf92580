"""System tab: disable services, apply registry tweaks, remove bloatware."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, Sequence

from PySide6.QtCore import QThreadPool
from PySide6.QtWidgets import (
    QCheckBox,
    QGridLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMessageBox,
    QPushButton,
    QScrollArea,
    QVBoxLayout,
    QWidget,
)

from services.system_tweaks import SystemTweaksService, TweakResult, detect_os_release
from winprovision.tweak_catalog import BLOATWARE, REGISTRY_TWEAKS, SERVICES, WINDOWS_11, applicable
from ui.workers import ServiceWorker

LogCallback = Callable[[str], None]


class SystemTab(QWidget):
    def __init__(
        self,
        log_callback: LogCallback,
        thread_pool: QThreadPool,
        *,
        service: SystemTweaksService | None = None,
        os_release: str | None = None,
    ) -> None:
        super().__init__()
        self._log = log_callback
        self._thread_pool = thread_pool
        self._service = service or SystemTweaksService()
        self._os_release = os_release or detect_os_release()
        self._services = applicable(SERVICES, self._os_release)
        self._tweaks = applicable(REGISTRY_TWEAKS, self._os_release)
        self._bloatware = applicable(BLOATWARE, self._os_release)
        self._service_boxes: Dict[str, QCheckBox] = {}
        self._tweak_boxes: Dict[str, QCheckBox] = {}
        self._bloatware_boxes: Dict[str, QCheckBox] = {}
        self._status_labels: Dict[str, QLabel] = {}
        self._workers: set[ServiceWorker] = set()
        self._busy = False
        self._build_ui()
        self._start_check()

    def _track_worker(self, worker: ServiceWorker) -> None:
        self._workers.add(worker)
        worker.signals.finished.connect(lambda *_: self._workers.discard(worker))
        worker.signals.error.connect(lambda *_: self._workers.discard(worker))

    def _build_ui(self) -> None:
        outer = QVBoxLayout(self)
        release = "Windows 11" if self._os_release == WINDOWS_11 else "Windows 10"
        outer.addWidget(QLabel(f"Detected {release}; only applicable items are listed."))

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        content = QWidget()
        layout = QVBoxLayout(content)
        services = ((s.name, s.display_name) for s in self._services)
        tweaks = ((t.name, t.name) for t in self._tweaks)
        bloatware = ((b.name, b.name) for b in self._bloatware)
        layout.addWidget(self._make_group("Services to disable", services, self._service_boxes))
        layout.addWidget(self._make_group("Registry tweaks", tweaks, self._tweak_boxes, with_status=True))
        layout.addWidget(self._make_group("Bloatware to remove", bloatware, self._bloatware_boxes))
        layout.addStretch()
        scroll.setWidget(content)
        outer.addWidget(scroll)

        button_row = QHBoxLayout()
        self._btn_apply = QPushButton("Apply Selected")
        self._btn_check = QPushButton("Re-check Tweaks")
        button_row.addWidget(self._btn_apply)
        button_row.addWidget(self._btn_check)
        button_row.addStretch()
        outer.addLayout(button_row)
        self._btn_apply.clicked.connect(self._start_apply)
        self._btn_check.clicked.connect(self._start_check)

    def _make_group(
        self,
        title: str,
        items: Iterable[tuple[str, str]],
        boxes: Dict[str, QCheckBox],
        *,
        with_status: bool = False,
    ) -> QGroupBox:
        group = QGroupBox(title)
        grid = QGridLayout(group)
        for row, (name, caption) in enumerate(items):
            box = QCheckBox(caption)
            grid.addWidget(box, row, 0)
            boxes[name] = box
            if with_status:
                label = QLabel("Checking...")
                grid.addWidget(label, row, 1)
                self._status_labels[name] = label
        return group

    def _start_check(self) -> None:
        if self._busy:
            return
        self._set_busy(True)
        worker = ServiceWorker(self._service.check_registry_tweaks, self._tweaks)
        worker.signals.finished.connect(self._handle_check_results)
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)

    def _handle_check_results(self, results: list[TweakResult]) -> None:
        pending = 0
        for result in results:
            label = self._status_labels.get(result.name)
            if not label:
                continue
            status_icon = "✓" if result.success else "✗"
            color = "#4caf50" if result.success else "#f44336"
            label.setText(f"{status_icon} {result.message}")
            label.setStyleSheet(f"color: {color}; font-weight: bold;")
            if not result.success:
                pending += 1
        self._set_busy(False)
        summary = "All registry tweaks applied." if pending == 0 else f"{pending} registry tweak(s) not applied."
        self._log(summary)

    def _start_apply(self) -> None:
        if self._busy:
            QMessageBox.information(self, "In Progress", "Please wait for current operation to finish.")
            return
        services = [s for s in self._services if self._service_boxes[s.name].isChecked()]
        tweaks = [t for t in self._tweaks if self._tweak_boxes[t.name].isChecked()]
        bloatware = [b for b in self._bloatware if self._bloatware_boxes[b.name].isChecked()]
        if not (services or tweaks or bloatware):
            QMessageBox.information(self, "No Selection", "Select at least one item to apply.")
            return
        self._set_busy(True)
        self._log("Applying system changes...")
        worker = ServiceWorker(self._run_apply, services, tweaks, bloatware)
        worker.signals.finished.connect(self._handle_apply_results)
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)

    def _run_apply(self, services: Sequence, tweaks: Sequence, bloatware: Sequence) -> list[TweakResult]:
        results: list[TweakResult] = []
        if services:
            results.extend(self._service.disable_services(services))
        if tweaks:
            results.extend(self._service.apply_registry_tweaks(tweaks))
        if bloatware:
            results.extend(self._service.remove_bloatware(bloatware))
        return results

    def _handle_apply_results(self, results: list[TweakResult]) -> None:
        for result in results:
            status = "OK" if result.success else "FAIL"
            self._log(f"[{status}] {result.name} -> {result.message}")
        self._set_busy(False)
        self._start_check()

    def _set_busy(self, busy: bool) -> None:
        self._busy = busy
        self._btn_apply.setEnabled(not busy)
        self._btn_check.setEnabled(not busy)

    def _handle_error(self, message: str) -> None:
        self._log(f"[ERROR] {message}")
        self._set_busy(False)
