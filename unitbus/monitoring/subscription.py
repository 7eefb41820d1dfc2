"""Unit subscription - periodic ListUnits polling turned into a change stream"""

import asyncio
import logging
import operator
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional

from ..exceptions import FetchError
from ..models import Delta, Snapshot, UnitStatus
from .diff import Equality, build_snapshot, diff_snapshots

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Iterable[UnitStatus]]]


class UnitSubscription:
    """
    Poll the unit list every interval and publish what changed

    Every successful poll publishes a delta (possibly empty) on the update
    stream; a failed poll publishes a FetchError on the error stream instead
    and the next poll is diffed against the last good snapshot. The first
    delta lists every unit.

    Example:
        async with UnitSubscription(manager.list_units, interval=2.0) as sub:
            async for delta in sub:
                for name, status in delta.items():
                    print(name, status.active_state if status else "gone")
    """

    def __init__(
        self,
        fetch: Fetcher,
        interval: float = 1.0,
        buffer_size: int = 1,
        equal: Equality = operator.eq,
    ):
        """
        Initialize subscription

        Args:
            fetch: Coroutine function returning the current unit list
            interval: Poll period in seconds, measured start to start
            buffer_size: Capacity of the update and error queues; a full queue blocks polling
            equal: Comparison deciding whether a unit changed
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")

        self.fetch = fetch
        self.interval = interval
        self.buffer_size = buffer_size
        self.equal = equal

        self._updates: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._errors: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._stopping = asyncio.Event()
        self._snapshot: Snapshot = {}
        self.task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def __aenter__(self) -> "UnitSubscription":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def __aiter__(self) -> AsyncIterator[Delta]:
        return self._iter_updates()

    async def _iter_updates(self) -> AsyncIterator[Delta]:
        while True:
            yield await self.next_update()

    async def start(self) -> None:
        """Start polling in the background"""
        if self.task is not None:
            logger.warning("UnitSubscription already started")
            return

        self.task = asyncio.create_task(self._poll_loop())
        logger.info(f"✅ UnitSubscription started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop polling; returns once the poll task has finished"""
        if self.task is None or self._stopping.is_set():
            return

        self._stopping.set()
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass

        logger.info("UnitSubscription stopped")

    async def next_update(self) -> Delta:
        """Wait for the next delta"""
        return await self._updates.get()

    async def next_error(self) -> FetchError:
        """Wait for the next fetch failure"""
        return await self._errors.get()

    async def _poll_loop(self) -> None:
        loop = asyncio.get_running_loop()

        while not self._stopping.is_set():
            deadline = loop.time() + self.interval
            await self._poll_once()

            remaining = deadline - loop.time()
            if remaining <= 0:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), remaining)
            except asyncio.TimeoutError:
                pass

    async def _poll_once(self) -> None:
        try:
            units = await self.fetch()
            current = build_snapshot(units)
            delta = diff_snapshots(self._snapshot, current, self.equal)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Unit poll failed, keeping last snapshot: {e}")
            error = FetchError(f"Failed to poll units: {e}")
            error.__cause__ = e
            await self._errors.put(error)
            return

        if delta:
            logger.debug(f"{len(delta)} units changed")
        await self._updates.put(delta)
        self._snapshot = current
