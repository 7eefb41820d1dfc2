"""Custom exceptions for unit control and monitoring"""

from typing import Optional


class UnitBusError(Exception):
    """Base exception for unitbus errors"""
    pass


class SystemdNotAvailableError(UnitBusError):
    """Raised when systemd is not available but required"""
    pass


class TransportError(UnitBusError):
    """
    Raised when a call to the service manager or the connection itself fails

    Attributes:
        error_name: D-Bus error name (e.g. org.freedesktop.systemd1.NoSuchUnit), if known
    """

    def __init__(self, message: str, error_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_name = error_name

    def __str__(self) -> str:
        if self.error_name:
            return f"{self.error_name}: {self.message}"
        return self.message


class FetchError(UnitBusError):
    """Raised (published on a subscription's error stream) when a unit snapshot fetch fails"""
    pass


class UnresolvedJobError(UnitBusError):
    """Raised when a job waiter expires before its completion notification arrives"""

    def __init__(self, job_path: str, reason: str):
        super().__init__(f"Job {job_path} unresolved: {reason}")
        self.job_path = job_path
        self.reason = reason


class InvalidModeError(UnitBusError, ValueError):
    """Raised when a job mode is not one of the modes systemd accepts"""
    pass
