"""Application entrypoint for the Windows provisioning PySide6 GUI."""
from __future__ import annotations

import logging
import sys

from PySide6.QtWidgets import QApplication

from services.privilege import ensure_admin
from ui.main_window import MainWindow
from winprovision.logging_config import setup_logging


def main() -> int:
    setup_logging()
    if not ensure_admin():
        return 0
    logging.getLogger(__name__).info("Starting GUI")
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
