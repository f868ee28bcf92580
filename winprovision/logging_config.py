"""Console + rotating file logging shared by the CLI and the GUI."""
from __future__ import annotations

import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path

from winprovision.paths import get_logs_directory

__all__ = ["setup_logging", "get_log_file_path"]

LOG_FILENAME = "provision.log"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_handler_lock = threading.Lock()
_configured = False


def _level_from_env() -> int:
    raw = os.environ.get("LOG_LEVEL", "").strip().upper()
    if not raw:
        return logging.INFO
    level = logging.getLevelName(raw)
    if not isinstance(level, int):
        print(f"[logging_config] WARNING: unknown LOG_LEVEL '{raw}', defaulting to INFO", flush=True)
        return logging.INFO
    return level


def _file_handler(log_dir: Path, level: int) -> RotatingFileHandler | None:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILENAME, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
    except OSError as exc:
        # Console logging keeps working when the log folder is not writable.
        print(f"[logging_config] WARNING: could not create log file handler: {exc}", flush=True)
        return None
    handler.setFormatter(_FORMATTER)
    handler.setLevel(level)
    return handler


def setup_logging(log_dir: Path | None = None, level: int | None = None) -> logging.Logger:
    """Attach console and file handlers to the root logger once per process."""
    global _configured
    root = logging.getLogger()
    with _handler_lock:
        if _configured:
            return root
        resolved_level = level if level is not None else _level_from_env()
        stream = logging.StreamHandler()
        stream.setFormatter(_FORMATTER)
        stream.setLevel(resolved_level)
        root.addHandler(stream)
        handler = _file_handler(log_dir or get_logs_directory(), resolved_level)
        if handler:
            root.addHandler(handler)
        root.setLevel(resolved_level)
        _configured = True
    return root


def get_log_file_path(log_dir: Path | None = None) -> Path:
    return (log_dir or get_logs_directory()) / LOG_FILENAME
