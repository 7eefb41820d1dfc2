"""D-Bus transport to the systemd manager object"""

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus

from .base import BaseTransport, NotificationHandler
from ..exceptions import TransportError
from ..models import JobRemoved, Property

logger = logging.getLogger(__name__)

SYSTEMD_SERVICE = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
MANAGER_INTERFACE = "org.freedesktop.systemd1.Manager"

DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_INTERFACE = "org.freedesktop.DBus"

JOB_REMOVED_MATCH = (
    f"type='signal',sender='{SYSTEMD_SERVICE}',path='{SYSTEMD_PATH}',"
    f"interface='{MANAGER_INTERFACE}',member='JobRemoved'"
)


def _marshal(value: Any) -> Any:
    """Turn Property objects (possibly nested in lists) into (sv) structs"""
    if isinstance(value, Property):
        return [value.name, Variant(value.signature, value.value)]
    if isinstance(value, (list, tuple)):
        return [_marshal(item) for item in value]
    return value


class DBusTransport(BaseTransport):
    """
    Connection to systemd over the system bus, or the session bus for the
    per-user manager (systemctl --user).

    Uses dbus-fast for the wire protocol. JobRemoved signals are delivered to
    the registered notification handlers on the event loop.
    """

    def __init__(self, user_mode: bool = False):
        """
        Initialize transport

        Args:
            user_mode: Talk to the user manager on the session bus
        """
        self.user_mode = user_mode
        self._bus: Optional[MessageBus] = None
        self._handlers: List[NotificationHandler] = []
        self._disconnect_task: Optional[asyncio.Task] = None
        self._ended = False

    @property
    def bus_name(self) -> str:
        return "session" if self.user_mode else "system"

    @property
    def connected(self) -> bool:
        return self._bus is not None

    async def connect(self) -> None:
        if self._bus is not None:
            return

        bus_type = BusType.SESSION if self.user_mode else BusType.SYSTEM
        try:
            bus = await MessageBus(bus_type=bus_type).connect()
        except Exception as e:
            raise TransportError(f"Failed to connect to the {self.bus_name} bus: {e}") from e

        self._bus = bus
        self._ended = False
        bus.add_message_handler(self._on_message)

        try:
            await self._send(Message(
                destination=DBUS_SERVICE,
                path=DBUS_PATH,
                interface=DBUS_INTERFACE,
                member="AddMatch",
                signature="s",
                body=[JOB_REMOVED_MATCH],
            ))
        except TransportError:
            bus.disconnect()
            self._bus = None
            raise

        self._disconnect_task = asyncio.create_task(self._watch_disconnect(bus))
        logger.info(f"Connected to systemd on the {self.bus_name} bus")

    async def close(self) -> None:
        bus = self._bus
        if bus is None:
            return

        bus.disconnect()
        if self._disconnect_task:
            await self._disconnect_task
            self._disconnect_task = None
        logger.info(f"Disconnected from the {self.bus_name} bus")

    async def call(self, member: str, signature: str = "", body: Sequence[Any] = ()) -> List[Any]:
        logger.debug(f"Call {MANAGER_INTERFACE}.{member}({signature}) {list(body)!r}")
        return await self._send(Message(
            destination=SYSTEMD_SERVICE,
            path=SYSTEMD_PATH,
            interface=MANAGER_INTERFACE,
            member=member,
            signature=signature,
            body=_marshal(list(body)),
        ))

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def remove_notification_handler(self, handler: NotificationHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def _send(self, message: Message) -> List[Any]:
        if self._bus is None:
            raise TransportError("Not connected")

        try:
            reply = await self._bus.call(message)
        except Exception as e:
            raise TransportError(f"{message.member} failed: {e}") from e

        if reply is None:
            return []
        if reply.message_type == MessageType.ERROR:
            detail = reply.body[0] if reply.body else "no details"
            raise TransportError(str(detail), error_name=reply.error_name)
        return list(reply.body)

    def _on_message(self, message: Message) -> None:
        if (
            message.message_type != MessageType.SIGNAL
            or message.path != SYSTEMD_PATH
            or message.interface != MANAGER_INTERFACE
            or message.member != "JobRemoved"
        ):
            return None

        try:
            job_id, job_path, unit, result = message.body
        except ValueError:
            logger.warning(f"Malformed JobRemoved signal: {message.body!r}")
            return None

        event = JobRemoved(job_id=int(job_id), job_path=job_path, unit=unit, result=result)
        for handler in list(self._handlers):
            handler(event)
        return None

    async def _watch_disconnect(self, bus: MessageBus) -> None:
        try:
            await bus.wait_for_disconnect()
        except Exception as e:
            logger.error(f"Connection to the {self.bus_name} bus lost: {e}")
        finally:
            if self._bus is bus:
                self._bus = None
            self._end_stream()

    def _end_stream(self) -> None:
        if self._ended:
            return
        self._ended = True
        for handler in list(self._handlers):
            handler(None)
