"""Transport layer for chat client connections.

Provides an abstraction over the connection transport so the server runtime
never depends on websocket internals.
"""

from chatserver.transport.base import Transport, TransportSession
from chatserver.transport.websocket_transport import (
    WebSocketSession,
    WebSocketTransport,
)

__all__ = [
    "Transport",
    "TransportSession",
    "WebSocketSession",
    "WebSocketTransport",
]
