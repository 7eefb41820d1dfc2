"""
Job correlator - matches JobRemoved notifications to the callers that started the jobs

systemd answers StartUnit & co. with the path of a freshly queued job; the
outcome arrives later as a JobRemoved signal on the shared bus connection.
The correlator keeps a table of job path -> JobWaiter and a single listener
task that resolves waiters as signals come in.

Example:
    correlator = JobCorrelator(transport)
    await correlator.start()

    waiter = await correlator.enqueue("StartUnit", "ss", ["nginx.service", "replace"])
    result = await waiter.wait(timeout=30)
"""

import asyncio
import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from ..exceptions import TransportError, UnitBusError, UnresolvedJobError
from ..models import JobRemoved, JobResult
from ..transport.base import BaseTransport

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Lifecycle of a pending job entry"""
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class JobWaiter:
    """
    One-shot completion handle for a queued job.

    Created by JobCorrelator.enqueue(); resolved at most once.
    """

    def __init__(self, correlator: "JobCorrelator", job_path: str, unit: Optional[str] = None):
        self.job_path = job_path
        self.unit = unit
        self.state = JobState.PENDING
        self.raw_result: Optional[str] = None
        self.created_at = time.monotonic()
        self._correlator = correlator
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    def __repr__(self) -> str:
        return f"<JobWaiter {self.job_path} unit={self.unit!r} state={self.state.value}>"

    @property
    def done(self) -> bool:
        return self.state is not JobState.PENDING

    @property
    def result(self) -> Optional[JobResult]:
        """The job result once resolved, None otherwise"""
        if self.state is JobState.RESOLVED:
            return self._future.result()
        return None

    async def wait(self, timeout: Optional[float] = None) -> JobResult:
        """
        Wait for the job to finish

        Args:
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            JobResult reported by systemd

        Raises:
            UnresolvedJobError: If the waiter expired, was cancelled, or timed out
        """
        if timeout is None:
            return await asyncio.shield(self._future)

        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            self._correlator._retire(self, JobState.EXPIRED, f"no result after {timeout}s")
            return await self._future

    def cancel(self) -> None:
        """Stop tracking the job; a later notification for it is ignored"""
        self._correlator._retire(self, JobState.CANCELLED, "cancelled")

    def _resolve(self, raw_result: str) -> None:
        self.raw_result = raw_result
        try:
            result = JobResult(raw_result)
        except ValueError:
            logger.warning(f"Unknown job result {raw_result!r} for {self.job_path}, treating as failed")
            result = JobResult.FAILED

        self.state = JobState.RESOLVED
        self._future.set_result(result)

    def _expire(self, state: JobState, reason: str) -> None:
        self.state = state
        self._future.set_exception(UnresolvedJobError(self.job_path, reason))
        # Mark retrieved so unawaited waiters don't log "exception was never retrieved"
        self._future.exception()


class JobCorrelator:
    """
    Pending job table plus the notification listener that drains it.

    enqueue() holds the lock across the method call and the registration, and
    the listener takes the same lock before resolving, so a JobRemoved that
    races the method reply still finds its waiter.
    """

    def __init__(self, transport: BaseTransport, signal_buffer: int = 100, retired_memory: int = 256):
        """
        Initialize job correlator

        Args:
            transport: Connection delivering calls and notifications
            signal_buffer: Capacity of the notification queue; events beyond it are dropped
            retired_memory: How many finished job paths to remember for diagnostics
        """
        if signal_buffer < 1:
            raise ValueError("signal_buffer must be at least 1")

        self.transport = transport
        self.signal_buffer = signal_buffer
        self.retired_memory = retired_memory
        self.dropped_notifications = 0

        self._jobs: Dict[str, JobWaiter] = {}
        self._retired: "OrderedDict[str, JobState]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._end_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        return len(self._jobs)

    async def __aenter__(self) -> "JobCorrelator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Start the notification listener"""
        if self._running:
            logger.warning("JobCorrelator already running")
            return

        # Listener left over from an ended notification stream
        await self._cancel_tasks()

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.signal_buffer)
        self._queue = queue
        self.transport.add_notification_handler(self._on_notification)
        self._running = True
        self._task = asyncio.create_task(self._listen(queue))
        logger.info(f"✅ JobCorrelator started (signal_buffer={self.signal_buffer})")

    async def stop(self) -> None:
        """Stop the listener and expire every pending job"""
        if self._task is None:
            return

        self._running = False
        await self._cancel_tasks()

        expired = self._expire_all("correlator stopped")
        logger.info(f"JobCorrelator stopped ({expired} pending jobs expired)")

    async def _cancel_tasks(self) -> None:
        self.transport.remove_notification_handler(self._on_notification)
        for task in (self._task, self._end_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._end_task = None
        self._queue = None

    async def enqueue(
        self,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
        unit: Optional[str] = None,
    ) -> JobWaiter:
        """
        Issue a job-creating method call and register a waiter for it

        Args:
            member: Manager method, e.g. "StartUnit"
            signature: D-Bus signature of the arguments
            body: Arguments
            unit: Unit name, kept on the waiter for logging

        Returns:
            JobWaiter for the queued job

        Raises:
            TransportError: If the call fails; nothing is registered
            UnitBusError: If the correlator isn't running
        """
        if not self._running:
            raise UnitBusError("JobCorrelator is not running")

        async with self._lock:
            reply = await self.transport.call(member, signature, body)
            if not reply:
                raise TransportError(f"{member} returned no job path")

            job_path = str(reply[0])
            previous = self._jobs.get(job_path)
            if previous is not None:
                logger.warning(f"Job path {job_path} registered twice, dropping the earlier waiter")
                self._retire(previous, JobState.EXPIRED, "replaced by a newer job with the same path")

            waiter = JobWaiter(self, job_path, unit=unit)
            self._jobs[job_path] = waiter
            self._retired.pop(job_path, None)

        logger.debug(f"Queued {member} job {job_path} (unit={unit})")
        return waiter

    def reap(self, older_than: float) -> int:
        """
        Expire pending jobs registered more than older_than seconds ago

        Returns:
            Number of jobs expired
        """
        cutoff = time.monotonic() - older_than
        stale = [waiter for waiter in self._jobs.values() if waiter.created_at <= cutoff]
        for waiter in stale:
            self._retire(waiter, JobState.EXPIRED, f"pending for more than {older_than}s")

        if stale:
            logger.warning(f"Reaped {len(stale)} jobs without a completion notification")
        return len(stale)

    def _on_notification(self, event: Optional[JobRemoved]) -> None:
        queue = self._queue
        if queue is None:
            return

        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            if event is None:
                # End of stream must still reach the listener
                self._end_task = asyncio.get_running_loop().create_task(queue.put(None))
                return
            self.dropped_notifications += 1
            logger.warning(
                f"Notification queue full ({self.signal_buffer}), "
                f"dropped JobRemoved for {event.job_path} ({event.unit})"
            )

    async def _listen(self, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()

            if event is None:
                self.transport.remove_notification_handler(self._on_notification)
                async with self._lock:
                    self._running = False
                    expired = self._expire_all("notification stream ended")
                logger.error(f"Notification stream ended, {expired} pending jobs expired")
                return

            try:
                async with self._lock:
                    self._dispatch(event)
            except Exception as e:
                logger.error(f"Error dispatching {event!r}: {e}", exc_info=True)

    def _dispatch(self, event: JobRemoved) -> None:
        waiter = self._jobs.pop(event.job_path, None)
        if waiter is None:
            previous = self._retired.get(event.job_path)
            if previous is not None:
                logger.debug(f"Ignoring JobRemoved for {event.job_path}: already {previous.value}")
            else:
                logger.debug(f"Ignoring JobRemoved for foreign job {event.job_path} ({event.unit})")
            return

        waiter._resolve(event.result)
        self._remember(event.job_path, JobState.RESOLVED)
        logger.debug(f"Job {event.job_path} ({event.unit}) finished: {event.result}")

    def _retire(self, waiter: JobWaiter, state: JobState, reason: str) -> None:
        if self._jobs.get(waiter.job_path) is waiter:
            del self._jobs[waiter.job_path]
            self._remember(waiter.job_path, state)
        if not waiter.done:
            waiter._expire(state, reason)

    def _expire_all(self, reason: str) -> int:
        waiters = list(self._jobs.values())
        for waiter in waiters:
            self._retire(waiter, JobState.EXPIRED, reason)
        return len(waiters)

    def _remember(self, job_path: str, state: JobState) -> None:
        self._retired[job_path] = state
        self._retired.move_to_end(job_path)
        while len(self._retired) > self.retired_memory:
            self._retired.popitem(last=False)
