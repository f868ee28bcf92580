"""Settings dialog for engine timeouts, retries and catalog overrides."""
from __future__ import annotations

from pathlib import Path

from PySide6.QtWidgets import (
    QCheckBox,
    QDialog,
    QDialogButtonBox,
    QDoubleSpinBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMessageBox,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from services.batch import detect_memory_gb, recommended_worker_count
from winprovision.app_catalog import CatalogError, load_catalog
from winprovision.user_settings import SettingsStore, UserSettings


class SettingsDialog(QDialog):
    def __init__(self, settings: UserSettings, store: SettingsStore, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._settings = settings
        self._store = store
        self.setWindowTitle("Provisioning Settings")
        self.setMinimumWidth(520)
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        form = QFormLayout()

        self._installer_timeout = QDoubleSpinBox()
        self._installer_timeout.setRange(10.0, 7200.0)
        self._installer_timeout.setSuffix(" s")
        self._installer_timeout.setValue(self._settings.installer_timeout_seconds)
        form.addRow("Installer Timeout", self._installer_timeout)

        self._network_timeout = QDoubleSpinBox()
        self._network_timeout.setRange(1.0, 600.0)
        self._network_timeout.setSuffix(" s")
        self._network_timeout.setValue(self._settings.network_timeout_seconds)
        form.addRow("Network Timeout", self._network_timeout)

        self._scratch_dir = QLineEdit(self._settings.scratch_dir)
        self._scratch_dir.setPlaceholderText("Default: system temp folder")
        form.addRow("Download Folder", self._make_dir_picker(self._scratch_dir, "Select Download Folder"))

        self._catalog_path = QLineEdit(self._settings.catalog_path)
        self._catalog_path.setPlaceholderText("Default: built-in application list")
        form.addRow(
            "Custom Catalog",
            self._make_path_picker(self._catalog_path, "Select Catalog", "JSON Files (*.json);;All Files (*)"),
        )

        self._direct_only = QCheckBox("Skip winget and always download installers directly")
        self._direct_only.setChecked(self._settings.direct_download_only)
        form.addRow("Direct Download Only", self._direct_only)

        self._hash_bypass = QCheckBox("Retry winget once with --ignore-security-hash on hash mismatch")
        self._hash_bypass.setChecked(self._settings.allow_hash_bypass)
        form.addRow("Hash Bypass", self._hash_bypass)

        self._retry_attempts = QSpinBox()
        self._retry_attempts.setRange(1, 10)
        self._retry_attempts.setValue(self._settings.retry_attempts)
        form.addRow("Attempts per App", self._retry_attempts)

        self._retry_delay = QDoubleSpinBox()
        self._retry_delay.setRange(0.0, 300.0)
        self._retry_delay.setSuffix(" s")
        self._retry_delay.setValue(self._settings.retry_base_delay_seconds)
        form.addRow("Retry Base Delay", self._retry_delay)

        self._max_workers = QSpinBox()
        self._max_workers.setRange(1, 4)
        self._max_workers.setValue(min(self._settings.max_workers, 4))
        workers_row = QWidget()
        workers_layout = QHBoxLayout(workers_row)
        workers_layout.setContentsMargins(0, 0, 0, 0)
        workers_layout.addWidget(self._max_workers)
        self._btn_recommend = QPushButton("Recommend")
        self._btn_recommend.clicked.connect(self._recommend_workers)
        workers_layout.addWidget(self._btn_recommend)
        form.addRow("Parallel Installs", workers_row)

        self._workers_hint = QLabel("1 installs one application at a time.")
        form.addRow("", self._workers_hint)

        layout.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._save)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _make_path_picker(self, field: QLineEdit, title: str, filter_text: str) -> QWidget:
        container = QWidget()
        row = QHBoxLayout(container)
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(field)
        browse = QPushButton("Browse")
        browse.clicked.connect(lambda: self._browse_for_path(field, title, filter_text))
        row.addWidget(browse)
        return container

    def _make_dir_picker(self, field: QLineEdit, title: str) -> QWidget:
        container = QWidget()
        row = QHBoxLayout(container)
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(field)
        browse = QPushButton("Browse")
        browse.clicked.connect(lambda: self._browse_for_dir(field, title))
        row.addWidget(browse)
        return container

    def _browse_for_path(self, field: QLineEdit, title: str, filter_text: str) -> None:
        current = field.text().strip()
        start_dir = str(Path(current).parent) if current else str(Path.home())
        path, _ = QFileDialog.getOpenFileName(self, title, start_dir, filter_text)
        if path:
            field.setText(path)

    def _browse_for_dir(self, field: QLineEdit, title: str) -> None:
        current = field.text().strip()
        start_dir = current or str(Path.home())
        path = QFileDialog.getExistingDirectory(self, title, start_dir)
        if path:
            field.setText(path)

    def _recommend_workers(self) -> None:
        count = recommended_worker_count(memory_gb=detect_memory_gb())
        self._max_workers.setValue(count)
        self._workers_hint.setText(f"Recommended for this machine: {count}")

    def _save(self) -> None:
        catalog_path = self._catalog_path.text().strip()
        if catalog_path:
            try:
                load_catalog(catalog_path)
            except CatalogError as exc:
                QMessageBox.warning(self, "Invalid Catalog", f"Unable to load {catalog_path}:\n{exc}")
                return
        self._settings.installer_timeout_seconds = self._installer_timeout.value()
        self._settings.network_timeout_seconds = self._network_timeout.value()
        self._settings.scratch_dir = self._scratch_dir.text().strip()
        self._settings.catalog_path = catalog_path
        self._settings.direct_download_only = self._direct_only.isChecked()
        self._settings.allow_hash_bypass = self._hash_bypass.isChecked()
        self._settings.retry_attempts = self._retry_attempts.value()
        self._settings.retry_base_delay_seconds = self._retry_delay.value()
        self._settings.max_workers = self._max_workers.value()
        try:
            self._store.save(self._settings)
        except OSError as exc:
            QMessageBox.warning(self, "Save Failed", f"Unable to write {self._store.path}:\n{exc}")
            return
        self.accept()
