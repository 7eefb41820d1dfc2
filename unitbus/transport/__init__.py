"""Transports - connections to the service manager"""

from .base import BaseTransport, NotificationHandler
from .dbus import DBusTransport

__all__ = ["BaseTransport", "NotificationHandler", "DBusTransport"]
