"""Main window for the Windows provisioning tool."""
from __future__ import annotations

import logging

from PySide6.QtCore import Qt, QThreadPool
from PySide6.QtWidgets import (
    QMainWindow,
    QSplitter,
    QTabWidget,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from winprovision.app_catalog import AppCatalog, CatalogError, build_catalog
from winprovision.user_settings import SettingsStore
from ui.install_tab import InstallTab
from ui.system_tab import SystemTab

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Windows Provisioning Tool")
        self.resize(1200, 800)
        self._thread_pool = QThreadPool.globalInstance()
        self._settings_store = SettingsStore()
        self._settings = self._settings_store.load()
        self._log_view = QTextEdit()
        self._log_view.setReadOnly(True)
        self._log_view.setMinimumHeight(120)
        self._tabs = QTabWidget()
        self._tabs.addTab(self._create_install_tab(), "Applications")
        self._tabs.addTab(self._create_system_tab(), "System")

        splitter = QSplitter(Qt.Vertical)
        splitter.addWidget(self._tabs)
        splitter.addWidget(self._log_view)
        splitter.setStretchFactor(0, 4)
        splitter.setStretchFactor(1, 1)

        container = QWidget()
        layout = QVBoxLayout(container)
        layout.addWidget(splitter)
        self.setCentralWidget(container)

    def log_message(self, message: str) -> None:
        self._log_view.append(message)

    def _load_catalog(self) -> AppCatalog:
        try:
            return build_catalog(self._settings)
        except CatalogError as exc:
            logger.error("%s; using the built-in catalog", exc)
            self.log_message(f"[ERROR] {exc}; using the built-in catalog")
            self._settings.catalog_path = ""
            return build_catalog(self._settings)

    def _create_install_tab(self) -> QWidget:
        return InstallTab(
            self._load_catalog(),
            log_callback=self.log_message,
            thread_pool=self._thread_pool,
            settings=self._settings,
            settings_store=self._settings_store,
        )

    def _create_system_tab(self) -> QWidget:
        return SystemTab(
            log_callback=self.log_message,
            thread_pool=self._thread_pool,
        )
