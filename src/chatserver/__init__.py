"""Real-time multi-party chat session server.

Presence, a shared message log, server-wide settings owned by one user,
ad-hoc voice rooms and a point-to-point signaling relay, served over
WebSocket.
"""

from chatserver.coordinator import SessionCoordinator
from chatserver.server import ChatServer, start_server

__version__ = "0.1.0"

__all__ = ["ChatServer", "SessionCoordinator", "start_server"]
