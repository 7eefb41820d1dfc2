"""
Pytest Configuration and Shared Fixtures

Provides an in-memory transport standing in for the systemd bus, plus
unit record factories.
"""

import asyncio
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

import pytest

from unitbus.config import UnitBusSettings
from unitbus.jobs import JobCorrelator
from unitbus.manager import SystemdManager
from unitbus.models import JobRemoved, UnitStatus
from unitbus.transport.base import BaseTransport, NotificationHandler

JOB_PATH_PREFIX = "/org/freedesktop/systemd1/job/"

# Calls answered with an empty reply instead of a new job path
NO_JOB_METHODS = {"Subscribe", "Unsubscribe", "KillUnit"}


class FakeTransport(BaseTransport):
    """
    In-memory transport.

    Job-creating calls return fresh job paths; ListUnits returns `units`.
    Queue canned replies or exceptions per method with reply_with()/fail_next().
    With `auto_result` set, every job gets a JobRemoved right after its reply.
    """

    def __init__(self, auto_result: Optional[str] = None):
        self.auto_result = auto_result
        self.units: List[UnitStatus] = []
        self.calls: List[tuple] = []
        self.handlers: List[NotificationHandler] = []
        self.connected = False
        self.stream_ended = False
        self.before_reply: Optional[Callable[[str, List[Any]], None]] = None
        self._replies: Dict[str, Deque[Any]] = defaultdict(deque)
        self._next_job_id = 1

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        self.end_stream()

    async def call(self, member: str, signature: str = "", body: Sequence[Any] = ()) -> List[Any]:
        self.calls.append((member, signature, list(body)))

        if self._replies[member]:
            reply = self._replies[member].popleft()
        elif member == "ListUnits":
            reply = [[self._row(unit) for unit in self.units]]
        elif member in NO_JOB_METHODS:
            reply = []
        else:
            reply = [f"{JOB_PATH_PREFIX}{self._next_job_id}"]
            self._next_job_id += 1

        if isinstance(reply, Exception):
            raise reply

        if self.before_reply is not None:
            self.before_reply(member, reply)
        # Let other tasks run while the "reply" is in flight
        await asyncio.sleep(0)

        if self.auto_result is not None and member not in NO_JOB_METHODS and member != "ListUnits":
            unit = body[0] if body else ""
            asyncio.get_running_loop().call_soon(self.emit_job_removed, reply[0], unit, self.auto_result)

        return reply

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        self.handlers.append(handler)

    def remove_notification_handler(self, handler: NotificationHandler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def reply_with(self, member: str, reply: Any) -> None:
        self._replies[member].append(reply)

    def fail_next(self, member: str, error: Exception) -> None:
        self._replies[member].append(error)

    def emit(self, event: Optional[JobRemoved]) -> None:
        for handler in list(self.handlers):
            handler(event)

    def emit_job_removed(self, job_path: str, unit: str = "", result: str = "done", job_id: int = 0) -> None:
        self.emit(JobRemoved(job_id=job_id, job_path=job_path, unit=unit, result=result))

    def end_stream(self) -> None:
        if not self.stream_ended:
            self.stream_ended = True
            self.emit(None)

    def calls_to(self, member: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == member]

    @staticmethod
    def _row(unit: UnitStatus) -> list:
        return [
            unit.name, unit.description, unit.load_state, unit.active_state, unit.sub_state,
            unit.followed, unit.path, unit.job_id, unit.job_type, unit.job_path,
        ]


def make_unit(name: str, active_state: str = "active", sub_state: str = "running", **fields: Any) -> UnitStatus:
    """Build a UnitStatus with sensible defaults"""
    values = dict(
        name=name,
        description=f"{name} description",
        load_state="loaded",
        active_state=active_state,
        sub_state=sub_state,
        followed="",
        path=f"/org/freedesktop/systemd1/unit/{name.replace('.', '_2e')}",
    )
    values.update(fields)
    return UnitStatus(**values)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def transport():
    """Fake transport that never completes jobs on its own."""
    return FakeTransport()


@pytest.fixture
def auto_transport():
    """Fake transport that completes every job with "done"."""
    return FakeTransport(auto_result="done")


@pytest.fixture
def settings():
    """Settings independent of the environment."""
    return UnitBusSettings(
        _env_file=None,
        bus="system",
        signal_buffer=100,
        poll_interval=0.01,
        subscription_buffer=10,
        job_timeout=None,
    )


@pytest.fixture
def manager_factory(settings):
    """Build a SystemdManager on a given transport."""
    def factory(transport: BaseTransport, **overrides: Any) -> SystemdManager:
        return SystemdManager(transport, settings.model_copy(update=overrides))
    return factory


@pytest.fixture
async def correlator(transport):
    """Started JobCorrelator on the fake transport; stopped after the test."""
    correlator = JobCorrelator(transport)
    await correlator.start()
    yield correlator
    await correlator.stop()


@pytest.fixture
async def connected_manager(transport, manager_factory):
    """SystemdManager connected to the fake transport; closed after the test."""
    async with manager_factory(transport) as manager:
        yield manager


@pytest.fixture
def unit_factory():
    """Factory for UnitStatus records."""
    return make_unit
