"""Base transport interface"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence

from ..models import JobRemoved

# Called with each JobRemoved event, then once with None when the stream ends
NotificationHandler = Callable[[Optional[JobRemoved]], None]


class BaseTransport(ABC):
    """Abstract connection to the service manager"""

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the connection and start delivering notifications

        Raises:
            TransportError: If the connection cannot be established
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection; handlers then receive None"""
        pass

    @abstractmethod
    async def call(self, member: str, signature: str = "", body: Sequence[Any] = ()) -> List[Any]:
        """
        Call a method on the manager object

        Args:
            member: Method name, e.g. "StartUnit"
            signature: D-Bus signature of the arguments
            body: Arguments

        Returns:
            The reply's values

        Raises:
            TransportError: If the call fails or the manager returns an error
        """
        pass

    @abstractmethod
    def add_notification_handler(self, handler: NotificationHandler) -> None:
        """
        Register a callback for out-of-band notifications.

        Handlers run on the event loop and must not block.
        """
        pass

    @abstractmethod
    def remove_notification_handler(self, handler: NotificationHandler) -> None:
        pass
