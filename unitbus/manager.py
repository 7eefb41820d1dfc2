"""SystemdManager - High-level API for controlling and watching systemd units"""

import logging
import operator
from typing import Any, List, Optional, Sequence, Union

from .config import UnitBusSettings, get_settings
from .exceptions import SystemdNotAvailableError, TransportError
from .jobs import JobCorrelator, JobWaiter
from .models import JobMode, JobResult, Property, UnitStatus
from .monitoring import UnitSubscription
from .monitoring.diff import Equality
from .transport import BaseTransport, DBusTransport
from .utils.systemd_detect import has_systemd

logger = logging.getLogger(__name__)

Mode = Union[str, JobMode]

# Manager methods taking (unit name, mode) and returning a job path
UNIT_JOB_METHODS = (
    "StartUnit",
    "StopUnit",
    "ReloadUnit",
    "RestartUnit",
    "TryRestartUnit",
    "ReloadOrRestartUnit",
    "ReloadOrTryRestartUnit",
)


class SystemdManager:
    """
    High-level systemd client
    Owns the transport connection, the job correlator and any subscriptions

    Example:
        async with SystemdManager.from_settings() as manager:
            result = await manager.restart_unit("nginx.service")
            if not result.succeeded:
                print(f"restart finished with {result.value}")
    """

    def __init__(self, transport: BaseTransport, settings: Optional[UnitBusSettings] = None):
        """
        Initialize manager

        Args:
            transport: Connection to systemd (not yet connected)
            settings: Settings; defaults to get_settings()
        """
        self.settings = settings or get_settings()
        self.transport = transport
        self.correlator = JobCorrelator(transport, signal_buffer=self.settings.signal_buffer)
        self.subscriptions: List[UnitSubscription] = []

    @classmethod
    def from_settings(cls, settings: Optional[UnitBusSettings] = None) -> "SystemdManager":
        """
        Build a manager talking D-Bus to the bus named in settings

        Raises:
            SystemdNotAvailableError: If systemd is not running on this host
        """
        settings = settings or get_settings()
        if not has_systemd(settings.user_mode):
            raise SystemdNotAvailableError(f"Systemd is not available (bus={settings.bus})")
        return cls(DBusTransport(user_mode=settings.user_mode), settings)

    async def __aenter__(self) -> "SystemdManager":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """
        Connect, start the job listener and subscribe to manager signals

        Raises:
            TransportError: If connecting or subscribing fails
        """
        await self.transport.connect()
        try:
            # Listener first, so no JobRemoved is missed once signals flow
            await self.correlator.start()
            await self.transport.call("Subscribe")
        except Exception:
            await self.correlator.stop()
            await self.transport.close()
            raise

        logger.info("SystemdManager connected")

    async def close(self) -> None:
        """Stop subscriptions, expire pending jobs and disconnect"""
        for subscription in self.subscriptions:
            await subscription.stop()
        self.subscriptions.clear()

        if self.correlator.running:
            try:
                await self.transport.call("Unsubscribe")
            except TransportError as e:
                logger.debug(f"Unsubscribe failed during close: {e}")

        await self.correlator.stop()
        await self.transport.close()
        logger.info("SystemdManager closed")

    # ============================================================================
    # Jobs
    # ============================================================================

    async def enqueue_job(self, member: str, name: str, mode: Mode = JobMode.REPLACE) -> JobWaiter:
        """
        Queue a unit job without waiting for it

        Args:
            member: One of UNIT_JOB_METHODS, e.g. "RestartUnit"
            name: Unit name
            mode: Job mode

        Returns:
            JobWaiter to wait on or cancel

        Raises:
            ValueError: If member is not a unit job method
            InvalidModeError: If mode is invalid
            TransportError: If systemd rejects the job
        """
        if member not in UNIT_JOB_METHODS:
            raise ValueError(f"{member} is not a unit job method")
        job_mode = JobMode.parse(mode)
        return await self.correlator.enqueue(member, "ss", [name, job_mode.value], unit=name)

    async def _run_job(self, member: str, name: str, mode: Mode, timeout: Optional[float]) -> JobResult:
        waiter = await self.enqueue_job(member, name, mode)
        result = await waiter.wait(self._timeout(timeout))
        logger.info(f"{member} {name}: {result.value}")
        return result

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.settings.job_timeout

    async def start_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """
        Start a unit and wait for the job to finish

        Args:
            name: Unit to activate
            mode: replace, fail, isolate, ignore-dependencies or ignore-requirements
            timeout: Seconds to wait for the result (default: settings.job_timeout)

        Returns:
            JobResult: done, canceled, timeout, failed, dependency or skipped

        Raises:
            InvalidModeError: If mode is invalid
            TransportError: If systemd rejects the job
            UnresolvedJobError: If no result arrives within timeout
        """
        return await self._run_job("StartUnit", name, mode, timeout)

    async def stop_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """Stop a unit; see start_unit"""
        return await self._run_job("StopUnit", name, mode, timeout)

    async def reload_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """Reload a unit; fails unless the unit is already running"""
        return await self._run_job("ReloadUnit", name, mode, timeout)

    async def restart_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """Restart a unit, starting it if it isn't running"""
        return await self._run_job("RestartUnit", name, mode, timeout)

    async def try_restart_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """Restart a unit only if it is running"""
        return await self._run_job("TryRestartUnit", name, mode, timeout)

    async def reload_or_restart_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """Reload if the unit supports it, restart otherwise"""
        return await self._run_job("ReloadOrRestartUnit", name, mode, timeout)

    async def reload_or_try_restart_unit(self, name: str, mode: Mode = JobMode.REPLACE, timeout: Optional[float] = None) -> JobResult:
        """Reload if the unit supports it, try-restart otherwise"""
        return await self._run_job("ReloadOrTryRestartUnit", name, mode, timeout)

    async def start_transient_unit(
        self,
        name: str,
        mode: Mode = JobMode.REPLACE,
        properties: Sequence[Property] = (),
        timeout: Optional[float] = None,
    ) -> JobResult:
        """
        Create and start a transient unit

        The unit is released once it stops running and nothing references
        it, or at reboot.

        Args:
            name: Unit name including suffix; must be unique
            mode: Job mode, as for start_unit
            properties: Unit properties, e.g. Property.exec_start([...])
            timeout: Seconds to wait for the result

        Returns:
            JobResult of the start job
        """
        job_mode = JobMode.parse(mode)
        waiter = await self.correlator.enqueue(
            "StartTransientUnit",
            "ssa(sv)a(sa(sv))",
            [name, job_mode.value, list(properties), []],
            unit=name,
        )
        result = await waiter.wait(self._timeout(timeout))
        logger.info(f"StartTransientUnit {name}: {result.value}")
        return result

    async def kill_unit(self, name: str, signal: int, who: str = "all") -> None:
        """
        Send a signal to the unit's processes; no job is queued

        Args:
            name: Unit name
            signal: UNIX signal number (int or signal.Signals)
            who: Which processes: main, control or all

        Raises:
            TransportError: If systemd rejects the request
        """
        await self.transport.call("KillUnit", "ssi", [name, who, int(signal)])
        logger.info(f"Sent signal {int(signal)} to {name} ({who})")

    # ============================================================================
    # Units
    # ============================================================================

    async def list_units(self) -> List[UnitStatus]:
        """
        List all currently loaded units

        A unit may be loaded under several names, so there can be more names
        than actual units.

        Raises:
            TransportError: If the call fails or the reply is malformed
        """
        reply = await self.transport.call("ListUnits")
        rows = reply[0] if reply else []
        try:
            return [UnitStatus.from_dbus(row) for row in rows]
        except (TypeError, ValueError) as e:
            raise TransportError(f"Unexpected ListUnits reply: {e}") from e

    async def subscribe_units(self, interval: Optional[float] = None) -> UnitSubscription:
        """
        Start a subscription publishing changed units every interval seconds

        Removed units are published as None.
        """
        return await self.subscribe_units_custom(
            interval if interval is not None else self.settings.poll_interval,
            self.settings.subscription_buffer,
            operator.eq,
        )

    async def subscribe_units_custom(self, interval: float, buffer_size: int, equal: Equality) -> UnitSubscription:
        """
        Like subscribe_units, with an explicit queue capacity and change comparison

        Args:
            interval: Poll period in seconds
            buffer_size: Capacity of the update and error queues
            equal: Returns True when two records of a unit count as unchanged
        """
        subscription = UnitSubscription(self.list_units, interval=interval, buffer_size=buffer_size, equal=equal)
        await subscription.start()
        self.subscriptions.append(subscription)
        return subscription
