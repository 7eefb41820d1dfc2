"""Systemd detection utilities"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

SYSTEMD_RUNTIME_DIR = Path("/run/systemd/system")
SYSTEM_BUS_SOCKET = Path("/run/dbus/system_bus_socket")


def has_systemd(user_mode: bool = False) -> bool:
    """
    Check if systemd is available

    Args:
        user_mode: Check for the per-user manager (systemctl --user)

    Returns:
        True if systemd is running and its bus is reachable, False otherwise
    """
    if not SYSTEMD_RUNTIME_DIR.is_dir():
        logger.debug("systemd not booted (no /run/systemd/system)")
        return False

    if user_mode:
        if not os.environ.get("DBUS_SESSION_BUS_ADDRESS") and not os.environ.get("XDG_RUNTIME_DIR"):
            logger.debug("No session bus address for the user manager")
            return False
        return True

    if os.environ.get("DBUS_SYSTEM_BUS_ADDRESS") or SYSTEM_BUS_SOCKET.exists():
        return True

    logger.debug(f"System bus socket {SYSTEM_BUS_SOCKET} not found")
    return False
