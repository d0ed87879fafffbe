"""
Publish/subscribe transport abstraction.

The consumer only depends on this interface, which lets the broker client
be swapped out (or faked in tests) without touching the dispatch loop.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union


@dataclass(frozen=True)
class InboundMessage:
    """A message received from the broker."""

    topic: str
    payload: bytes
    qos: int = 0
    received_at: float = field(default_factory=time.time)


class MessageTransport(ABC):
    """
    Abstract base class for broker transports.

    Implementations raise TransportError when the broker refuses or loses
    the connection.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open a session with the broker."""
        pass

    @abstractmethod
    async def subscribe(self, topics: Sequence[str], qos: int = 1) -> None:
        pass

    @abstractmethod
    async def unsubscribe(self, topics: Sequence[str]) -> None:
        pass

    @abstractmethod
    async def receive(self, timeout: float = 1.0) -> Optional[InboundMessage]:
        """
        Wait for the next message.

        Returns:
            The message, or None if none arrived within the timeout

        Raises:
            TransportError: If the connection was lost
        """
        pass

    @abstractmethod
    async def publish(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 0,
        retain: bool = False
    ) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session; safe to call when not connected."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass
