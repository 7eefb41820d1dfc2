"""
unitbus - systemd unit control and monitoring over D-Bus
Job results correlated from JobRemoved signals, unit changes from periodic snapshots
"""

from .config import UnitBusSettings, get_settings
from .manager import SystemdManager
from .models import JobMode, JobRemoved, JobResult, Property, UnitStatus
from .jobs import JobCorrelator, JobState, JobWaiter
from .monitoring import UnitSubscription, diff_snapshots, ignore_job_fields
from .exceptions import (
    UnitBusError,
    TransportError,
    FetchError,
    UnresolvedJobError,
    InvalidModeError,
    SystemdNotAvailableError,
)

__version__ = "0.1.0"

__all__ = [
    "SystemdManager",
    "UnitBusSettings",
    "get_settings",
    "JobMode",
    "JobRemoved",
    "JobResult",
    "Property",
    "UnitStatus",
    "JobCorrelator",
    "JobState",
    "JobWaiter",
    "UnitSubscription",
    "diff_snapshots",
    "ignore_job_fields",
    "UnitBusError",
    "TransportError",
    "FetchError",
    "UnresolvedJobError",
    "InvalidModeError",
    "SystemdNotAvailableError",
]
