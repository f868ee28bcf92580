"""Applications tab: pick catalog entries, install them, verify them."""
from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Iterable

from PySide6.QtCore import Qt, QThreadPool, QTimer
from PySide6.QtGui import QColor
from PySide6.QtWidgets import (
    QAbstractItemView,
    QDialog,
    QFileDialog,
    QHeaderView,
    QHBoxLayout,
    QMessageBox,
    QProgressBar,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from services.batch import RetryingInstaller, install_batch
from services.installer import EngineConfig, InstallAttemptResult, InstallEngine, create_engine
from services.run_log import format_result
from winprovision.app_catalog import AppCatalog, ApplicationSpec, CatalogError, UrlKind, build_catalog
from winprovision.logging_config import get_log_file_path
from winprovision.user_settings import ProfileStore, SelectionProfile, SettingsStore, UserSettings
from ui.settings_dialog import SettingsDialog
from ui.workers import ServiceWorker

LogCallback = Callable[[str], None]


def describe_routes(spec: ApplicationSpec) -> str:
    routes: list[str] = []
    if spec.package_manager_id:
        routes.append("winget")
    if spec.direct_download is not None:
        routes.append("GitHub" if spec.direct_download.url_kind is UrlKind.GITHUB_RELEASE else "Direct")
    return " + ".join(routes) or "None"


class InstallTab(QWidget):
    COL_SELECT = 0
    COL_CATEGORY = 1
    COL_APP = 2
    COL_ROUTES = 3
    COL_STATUS = 4
    COL_RESULT = 5

    def __init__(
        self,
        catalog: AppCatalog,
        log_callback: LogCallback,
        thread_pool: QThreadPool,
        *,
        settings: UserSettings | None = None,
        settings_store: SettingsStore | None = None,
    ) -> None:
        super().__init__()
        self._catalog = catalog
        self._log = log_callback
        self._thread_pool = thread_pool
        self._settings_store = settings_store or SettingsStore()
        self._settings = settings or self._settings_store.load()
        self._engine = self._create_engine()
        self._row_by_name: dict[str, int] = {}
        self._busy = False
        self._active_worker: ServiceWorker | None = None
        self._action_label = ""
        self._action_current = 0
        self._action_total = 0
        self._action_app = ""
        self._action_started_at: float | None = None
        self._build_ui()
        self._start_verification_scan()

    def _create_engine(self) -> InstallEngine:
        return create_engine(self._catalog.entries, EngineConfig.from_settings(self._settings))

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)

        button_row = QHBoxLayout()
        self._btn_install = QPushButton("Install Selected")
        self._btn_cancel = QPushButton("Cancel")
        self._btn_verify = QPushButton("Verify Installed")
        self._btn_load_profile = QPushButton("Load Profile")
        self._btn_save_profile = QPushButton("Save Profile")
        self._btn_settings = QPushButton("Settings")
        self._btn_select_all = QPushButton("Select All")
        self._btn_select_none = QPushButton("Select None")
        button_row.addWidget(self._btn_install)
        button_row.addWidget(self._btn_cancel)
        button_row.addWidget(self._btn_verify)
        button_row.addWidget(self._btn_load_profile)
        button_row.addWidget(self._btn_save_profile)
        button_row.addWidget(self._btn_settings)
        button_row.addStretch()
        button_row.addWidget(self._btn_select_all)
        button_row.addWidget(self._btn_select_none)
        layout.addLayout(button_row)
        self._btn_cancel.setEnabled(False)

        self._action_progress = QProgressBar(self)
        self._action_progress.setVisible(False)
        self._action_progress.setTextVisible(True)
        self._action_progress.setFormat("Working...")
        layout.addWidget(self._action_progress)
        self._action_timer = QTimer(self)
        self._action_timer.setInterval(1000)
        self._action_timer.timeout.connect(self._tick_action_timer)

        self._table = QTableWidget(0, 6, self)
        self._table.setHorizontalHeaderLabels(["Select", "Category", "Application", "Routes", "Status", "Result"])
        self._table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self._table.verticalHeader().setVisible(False)
        header = self._table.horizontalHeader()
        header.setStretchLastSection(True)
        header.setSectionResizeMode(self.COL_SELECT, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(self.COL_CATEGORY, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(self.COL_APP, QHeaderView.ResizeMode.Stretch)
        header.setSectionResizeMode(self.COL_ROUTES, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(self.COL_STATUS, QHeaderView.ResizeMode.Interactive)
        self._table.setColumnWidth(self.COL_STATUS, 140)
        layout.addWidget(self._table)

        self._populate_table()

        self._btn_install.clicked.connect(self._start_install)
        self._btn_cancel.clicked.connect(self._cancel_install)
        self._btn_verify.clicked.connect(self._start_verification_scan)
        self._btn_load_profile.clicked.connect(self._load_profile)
        self._btn_save_profile.clicked.connect(self._save_profile)
        self._btn_settings.clicked.connect(self._open_settings_dialog)
        self._btn_select_all.clicked.connect(self._select_all)
        self._btn_select_none.clicked.connect(self._select_none)

    def _populate_table(self) -> None:
        self._table.setRowCount(len(self._catalog.entries))
        self._table.clearContents()
        self._row_by_name.clear()
        for row, app in enumerate(self._catalog.entries):
            checkbox = QTableWidgetItem()
            checkbox.setFlags(Qt.ItemIsSelectable | Qt.ItemIsUserCheckable | Qt.ItemIsEnabled)
            checkbox.setCheckState(Qt.Unchecked)
            checkbox.setData(Qt.UserRole, app.name)
            self._table.setItem(row, self.COL_SELECT, checkbox)

            self._table.setItem(row, self.COL_CATEGORY, QTableWidgetItem(app.category))
            self._table.setItem(row, self.COL_APP, QTableWidgetItem(app.name))
            self._table.setItem(row, self.COL_ROUTES, QTableWidgetItem(describe_routes(app)))
            self._table.setItem(row, self.COL_STATUS, QTableWidgetItem("Pending"))
            self._table.setItem(row, self.COL_RESULT, QTableWidgetItem(""))
            self._row_by_name[app.name] = row

    def _open_settings_dialog(self) -> bool:
        if self._busy:
            QMessageBox.information(self, "In Progress", "Please wait for the current operation to complete.")
            return False
        dialog = SettingsDialog(self._settings, self._settings_store, self)
        if dialog.exec() != QDialog.Accepted:
            return False
        try:
            catalog = build_catalog(self._settings)
        except CatalogError as exc:
            self._log(f"[ERROR] {exc}")
            return False
        self._apply_catalog(catalog)
        return True

    def _apply_catalog(self, catalog: AppCatalog) -> None:
        self._catalog = catalog
        self._engine = self._create_engine()
        self._populate_table()
        self._start_verification_scan()

    def _select_all(self) -> None:
        self._set_checked(lambda _name: True)

    def _select_none(self) -> None:
        self._set_checked(lambda _name: False)

    def _set_checked(self, predicate: Callable[[str], bool]) -> None:
        for row in range(self._table.rowCount()):
            item = self._table.item(row, self.COL_SELECT)
            if item:
                checked = predicate(str(item.data(Qt.UserRole)))
                item.setCheckState(Qt.Checked if checked else Qt.Unchecked)

    def _selected_apps(self) -> list[str]:
        selection: list[str] = []
        for row in range(self._table.rowCount()):
            item = self._table.item(row, self.COL_SELECT)
            if item and item.checkState() == Qt.Checked:
                app_name = item.data(Qt.UserRole)
                if isinstance(app_name, str):
                    selection.append(app_name)
        return selection

    def _load_profile(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Load Profile", str(Path.home()), "JSON Files (*.json)")
        if not path:
            return
        try:
            profile = ProfileStore(path).load()
        except (OSError, ValueError) as exc:
            QMessageBox.warning(self, "Invalid Profile", f"Unable to load {path}:\n{exc}")
            return
        wanted = {name.lower() for name in profile.apps}
        self._set_checked(lambda name: name.lower() in wanted)
        unknown = sorted(set(profile.apps) - set(self._catalog.names()))
        if unknown:
            self._log(f"Profile lists unknown applications: {', '.join(unknown)}")
        self._log(f"Loaded profile {path}")

    def _save_profile(self) -> None:
        path, _ = QFileDialog.getSaveFileName(self, "Save Profile", str(Path.home() / "profile.json"), "JSON Files (*.json)")
        if not path:
            return
        try:
            ProfileStore(path).save(SelectionProfile(apps=self._selected_apps()))
        except OSError as exc:
            QMessageBox.warning(self, "Save Failed", f"Unable to write {path}:\n{exc}")
            return
        self._log(f"Saved profile {path}")

    def _start_install(self) -> None:
        if self._busy:
            QMessageBox.information(self, "In Progress", "Please wait for the current operation to complete.")
            return
        selection = self._catalog.select(self._selected_apps())
        if not selection:
            QMessageBox.information(self, "No Selection", "Select at least one application to continue.")
            return
        self._set_busy(True)
        self._btn_cancel.setEnabled(True)
        self._begin_action_progress("Installing", len(selection))
        for spec in selection:
            self._set_status(spec.name, "Queued", "checking")
            self._set_item_text(self._row_by_name[spec.name], self.COL_RESULT, "")
        self._log(f"Starting install for {len(selection)} app(s) ...")
        # One run log per batch so runs.log gets each result once.
        self._engine = self._create_engine()
        installer = RetryingInstaller(
            self._engine,
            attempts=self._settings.retry_attempts,
            base_delay=self._settings.retry_base_delay_seconds,
        )
        worker = ServiceWorker(
            install_batch, installer, selection, max_workers=self._settings.max_workers, controlled=True
        )
        worker.signals.finished.connect(self._handle_install_results)
        worker.signals.error.connect(self._handle_error)
        worker.signals.progress.connect(self._handle_action_progress)
        self._active_worker = worker
        self._thread_pool.start(worker)

    def _cancel_install(self) -> None:
        if self._active_worker is None:
            return
        self._active_worker.cancel()
        self._btn_cancel.setEnabled(False)
        self._log("Cancelling: running installers will be stopped, queued apps skipped.")

    def _handle_install_results(self, results: Iterable[InstallAttemptResult]) -> None:
        if self._active_worker is not None and self._active_worker.cancelled:
            self._log("Install run cancelled.")
        for result in results:
            self._log(format_result(result))
            row = self._row_by_name.get(result.app_name)
            if row is None:
                continue
            if not result.succeeded:
                status, level = "Failed", "failed"
            elif result.failure is not None:
                status, level = "Unverified", "unverified"
            else:
                status, level = "Installed", "installed"
            self._set_status(result.app_name, status, level)
            self._set_item_text(row, self.COL_RESULT, result.error_detail or result.method_used.value)
        log_path = get_log_file_path()
        if self._engine.run_log.save(log_path.with_name("runs.log")):
            self._log(f"Run summary appended to {log_path.with_name('runs.log')}")
        self._finish_action()

    def _handle_error(self, message: str) -> None:
        self._log(f"[ERROR] {message}")
        self._finish_action()

    def _finish_action(self) -> None:
        self._active_worker = None
        self._btn_cancel.setEnabled(False)
        self._set_busy(False)
        self._end_action_progress()

    def _start_verification_scan(self) -> None:
        if self._busy:
            return
        self._set_busy(True)
        self._log("Checking which applications are installed...")
        engine = self._engine
        entries = list(self._catalog.entries)
        worker = ServiceWorker(_scan_installed, engine, entries)
        worker.signals.finished.connect(self._handle_scan_results)
        worker.signals.error.connect(self._handle_error)
        self._thread_pool.start(worker)

    def _handle_scan_results(self, results: dict[str, bool]) -> None:
        for name, installed in results.items():
            if installed:
                self._set_status(name, "Installed", "installed")
            else:
                self._set_status(name, "Not Installed", "not_installed")
        self._set_busy(False)

    def _set_busy(self, busy: bool) -> None:
        self._busy = busy
        for button in (
            self._btn_install,
            self._btn_verify,
            self._btn_load_profile,
            self._btn_save_profile,
            self._btn_settings,
            self._btn_select_all,
            self._btn_select_none,
        ):
            button.setEnabled(not busy)

    def _handle_action_progress(self, current: int, total: int, app_name: str) -> None:
        self._action_current = current
        self._action_total = total if total > 0 else self._action_total
        self._action_progress.setRange(0, max(self._action_total, 1))
        self._action_progress.setValue(current)
        self._action_app = app_name
        self._update_action_progress_text()

    def _tick_action_timer(self) -> None:
        if not self._action_progress.isVisible():
            self._action_timer.stop()
            return
        self._update_action_progress_text()

    def _begin_action_progress(self, label: str, total: int) -> None:
        self._action_label = label
        self._action_total = max(total, 1)
        self._action_current = 0
        self._action_app = ""
        self._action_started_at = time.monotonic()
        self._action_progress.setRange(0, self._action_total)
        self._action_progress.setValue(0)
        self._action_progress.setVisible(True)
        self._update_action_progress_text()
        self._action_timer.start()

    def _end_action_progress(self) -> None:
        self._action_timer.stop()
        self._action_progress.setVisible(False)
        self._action_started_at = None

    def _update_action_progress_text(self) -> None:
        elapsed = 0
        if self._action_started_at is not None:
            elapsed = int(time.monotonic() - self._action_started_at)
        app_part = f" | last: {self._action_app}" if self._action_app else ""
        text = f"{self._action_label} {self._action_current}/{self._action_total}{app_part} | {_format_elapsed(elapsed)}"
        self._action_progress.setFormat(text)

    def _set_item_text(self, row: int, column: int, text: str) -> None:
        item = self._table.item(row, column)
        if item is None:
            item = QTableWidgetItem(text)
            self._table.setItem(row, column, item)
        else:
            item.setText(text)

    def _set_status(self, app_name: str, text: str, level: str) -> None:
        row = self._row_by_name.get(app_name)
        if row is None:
            return
        self._set_item_text(row, self.COL_STATUS, text)
        color = _STATUS_COLORS.get(level)
        if color is None:
            return
        for col in range(self.COL_CATEGORY, self.COL_RESULT + 1):
            item = self._table.item(row, col)
            if item:
                item.setForeground(color)


_STATUS_COLORS = {
    "installed": QColor("#27ae60"),
    "unverified": QColor("#f39c12"),
    "not_installed": QColor("#9aa7b2"),
    "failed": QColor("#e74c3c"),
    "checking": QColor("#f1c40f"),
}


def _scan_installed(engine: InstallEngine, entries: list[ApplicationSpec]) -> dict[str, bool]:
    return {spec.name: engine.is_installed(spec) for spec in entries}


def _format_elapsed(total_seconds: int) -> str:
    minutes, seconds = divmod(max(total_seconds, 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"
