"""Path utilities for locating application directories."""
from __future__ import annotations

import sys
import tempfile
from pathlib import Path


def get_application_directory() -> Path:
    """
    Get the directory where the application is located.

    When running as a compiled .exe (PyInstaller), this returns the directory
    containing the .exe file.

    When running as a Python script, this returns the project root directory.

    Returns:
        Path to the application directory where logs and profiles are stored.
    """
    if getattr(sys, "frozen", False):
        # sys.executable points to the .exe file
        return Path(sys.executable).parent
    # Go up from winprovision/paths.py to project root
    return Path(__file__).parent.parent


def get_logs_directory() -> Path:
    """Get the directory holding the rotating provisioning log."""
    return get_application_directory() / "logs"


def get_scratch_directory() -> Path:
    """Get the temp root used for downloaded installers."""
    return Path(tempfile.gettempdir()) / "winprovision"
