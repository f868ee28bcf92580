"""Administrator checks; installers and service changes need elevation."""
from __future__ import annotations

import ctypes
import logging
import sys

logger = logging.getLogger(__name__)

_MB_OK = 0x00000000
_MB_ICONWARNING = 0x00000030
_SHELL_EXECUTE_OK = 32


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except AttributeError:
        return False


def relaunch_as_admin() -> bool:
    if not sys.platform.startswith("win"):
        return False
    if getattr(sys, "frozen", False):
        params = " ".join(f'"{arg}"' for arg in sys.argv[1:])
    else:
        params = " ".join(f'"{arg}"' for arg in sys.argv)
    result = ctypes.windll.shell32.ShellExecuteW(None, "runas", sys.executable, params, None, 1)
    return result > _SHELL_EXECUTE_OK


def _show_admin_required_dialog() -> None:
    try:
        ctypes.windll.user32.MessageBoxW(
            None,
            "Provisioning needs administrator rights. The tool will restart elevated.",
            "Administrator Required",
            _MB_OK | _MB_ICONWARNING,
        )
    except AttributeError:
        logger.warning("Administrator rights required")


def ensure_admin(*, interactive: bool = True) -> bool:
    """Return True when already elevated; otherwise relaunch elevated and return False."""
    if not sys.platform.startswith("win"):
        return True
    if is_admin():
        return True
    if interactive:
        _show_admin_required_dialog()
    if not relaunch_as_admin():
        logger.error("Elevation was refused or failed")
    return False
