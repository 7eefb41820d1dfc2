"""Data classes for jobs, units and notifications"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from .exceptions import InvalidModeError


class JobMode(str, Enum):
    """
    How a new job interacts with jobs already queued.

    replace: start the unit and its dependencies, replacing conflicting queued jobs.
    fail: like replace, but fail if this would change an already queued job.
    isolate: start the unit and stop every unit that isn't a dependency of it.
    ignore-dependencies / ignore-requirements: skip all or only requirement
    dependencies; not recommended.
    """
    REPLACE = "replace"
    FAIL = "fail"
    ISOLATE = "isolate"
    IGNORE_DEPENDENCIES = "ignore-dependencies"
    IGNORE_REQUIREMENTS = "ignore-requirements"

    @classmethod
    def parse(cls, mode: Union[str, "JobMode"]) -> "JobMode":
        """Validate a mode given as a string or enum member"""
        try:
            return cls(mode)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InvalidModeError(f"Invalid job mode {mode!r}, expected one of: {choices}") from None


class JobResult(str, Enum):
    """Outcome of a job as reported by the JobRemoved signal"""
    DONE = "done"            # executed successfully
    CANCELED = "canceled"    # canceled before it finished
    TIMEOUT = "timeout"      # job timeout was reached
    FAILED = "failed"
    DEPENDENCY = "dependency"  # a job this job depended on failed
    SKIPPED = "skipped"      # didn't apply to the unit's current state

    @property
    def succeeded(self) -> bool:
        return self is JobResult.DONE


@dataclass(frozen=True)
class UnitStatus:
    """Status of one loaded unit, as returned by ListUnits"""

    name: str  # primary unit name
    description: str
    load_state: str  # whether the unit file was loaded successfully
    active_state: str  # whether the unit is currently started
    sub_state: str  # finer-grained, unit type specific state
    followed: str  # unit followed in its state by this one, or ""
    path: str  # unit object path
    job_id: int = 0  # id of a job queued for the unit, 0 if none
    job_type: str = ""
    job_path: str = "/"

    @classmethod
    def from_dbus(cls, row: Sequence[Any]) -> "UnitStatus":
        """Build a record from one (ssssssouso) ListUnits row"""
        if len(row) != 10:
            raise ValueError(f"Expected 10 fields in unit row, got {len(row)}")
        return cls(
            name=row[0],
            description=row[1],
            load_state=row[2],
            active_state=row[3],
            sub_state=row[4],
            followed=row[5],
            path=row[6],
            job_id=int(row[7]),
            job_type=row[8],
            job_path=row[9],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


@dataclass(frozen=True)
class Property:
    """
    A transient unit property: name, D-Bus signature and value.

    Example:
        Property.description("One-off backup")
        Property.exec_start(["/usr/bin/rsync", "-a", "/srv", "/backup"])
    """

    name: str
    signature: str
    value: Any

    @classmethod
    def description(cls, text: str) -> "Property":
        return cls("Description", "s", text)

    @classmethod
    def exec_start(cls, argv: List[str], ignore_failure: bool = False) -> "Property":
        if not argv:
            raise ValueError("ExecStart needs at least the program path")
        return cls("ExecStart", "a(sasb)", [[argv[0], list(argv), ignore_failure]])

    @classmethod
    def remain_after_exit(cls, enabled: bool = True) -> "Property":
        return cls("RemainAfterExit", "b", enabled)


@dataclass(frozen=True)
class JobRemoved:
    """A JobRemoved notification: a queued job finished"""

    job_id: int
    job_path: str
    unit: str
    result: str


# unit name -> status
Snapshot = Dict[str, UnitStatus]

# unit name -> new status, or None when the unit disappeared
Delta = Dict[str, Optional[UnitStatus]]
