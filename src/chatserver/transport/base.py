"""Transport contracts used by the chat server runtime.

The runtime only sees named events: a ``TransportSession`` turns a client
connection into a stream of ``(event, data)`` pairs and accepts outbound
events; a ``Transport`` hands out new sessions as clients arrive.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any


class TransportSession(ABC):
    """A single client connection carrying JSON events both ways.

    ``session_id`` is a transport-level handle for logs. The chat identity
    of the connection is assigned separately by the server.
    """

    @property
    @abstractmethod
    def session_id(self) -> str: ...

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    async def send_event(self, event: str, data: Any) -> None:
        """Deliver one event to the client.

        Raises:
            ConnectionError: If the connection is already gone
        """

    @abstractmethod
    def receive_events(self) -> AsyncIterator[tuple[str, Any]]:
        """Iterate over inbound events until the client disconnects.

        Implementations skip frames they cannot decode.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""


class Transport(ABC):
    """A listener that produces TransportSessions."""

    @property
    @abstractmethod
    def transport_type(self) -> str: ...

    @property
    @abstractmethod
    def is_running(self) -> bool: ...

    @abstractmethod
    async def start(self) -> None:
        """Begin listening; returns once clients can connect.

        Raises:
            RuntimeError: If already started
            OSError: If the listen address cannot be bound
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop listening and close open connections."""

    @abstractmethod
    async def accept_session(self) -> TransportSession:
        """Wait for the next client.

        Raises:
            RuntimeError: If the transport is not running
        """
