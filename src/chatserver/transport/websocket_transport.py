"""WebSocket transport for chat clients.

Every accepted socket is wrapped in a WebSocketSession and handed to the
server's accept loop. Frames are JSON event envelopes (see
``websocket_protocol``); sockets beyond the configured limit are closed
straight away with code 1013.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from chatserver.transport.base import Transport, TransportSession
from chatserver.transport.websocket_protocol import (
    FrameDecodeError,
    decode_event,
    encode_event,
)

logger = logging.getLogger(__name__)

# "Try again later": the server is at its connection limit
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketSession(TransportSession):
    """One chat client socket speaking named JSON events."""

    def __init__(self, websocket: ServerConnection, session_id: str) -> None:
        self._websocket = websocket
        self._session_id = session_id
        self._closed = False
        self.frames_discarded = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def remote_address(self) -> Any:
        return self._websocket.remote_address

    @property
    def is_connected(self) -> bool:
        return not self._closed and self._websocket.state is State.OPEN

    async def send_event(self, event: str, data: Any) -> None:
        """Write one event frame.

        Raises:
            ConnectionError: If the socket is no longer open
        """
        if not self.is_connected:
            raise ConnectionError(f"Session {self._session_id}: connection is closed")

        frame = encode_event(event, data)
        try:
            await self._websocket.send(frame)
        except ConnectionClosed as e:
            self._closed = True
            raise ConnectionError(f"Session {self._session_id}: {e}") from e

    async def receive_events(self) -> AsyncIterator[tuple[str, Any]]:
        """Yield decoded events until the client goes away.

        Frames that are not a valid event envelope are counted and skipped.
        The client is not told.
        """
        try:
            async for frame in self._websocket:
                try:
                    envelope = decode_event(frame)
                except FrameDecodeError as e:
                    self.frames_discarded += 1
                    logger.warning(
                        "Invalid frame ignored",
                        extra={
                            "session_id": self._session_id,
                            "error": str(e),
                            "discarded": self.frames_discarded,
                        },
                    )
                    continue
                yield envelope.event, envelope.data
        except ConnectionClosed as e:
            logger.info(
                "Client connection dropped",
                extra={"session_id": self._session_id, "code": e.rcvd.code if e.rcvd else None},
            )
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._closed and self._websocket.state is not State.OPEN:
            return
        self._closed = True

        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Socket close failed",
                extra={"session_id": self._session_id, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """Chat WebSocket listener with a hard cap on open sockets."""

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 3000,
        max_connections: int = 200,
        max_frame_bytes: int = 2**20,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind address
            port: Bind port; 0 lets the OS choose (see ``port`` after start)
            max_connections: Sockets allowed open at once
            max_frame_bytes: Largest inbound frame accepted by the protocol layer
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_frame_bytes = max_frame_bytes

        self._server: Server | None = None
        self._sessions: dict[str, WebSocketSession] = {}
        self._pending: asyncio.Queue[WebSocketSession] = asyncio.Queue()

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def active_connections(self) -> int:
        return len(self._sessions)

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one only when that was 0."""
        if self._server is None:
            return self._port
        return next(iter(self._server.sockets)).getsockname()[1]

    async def start(self) -> None:
        """Bind and start listening.

        Raises:
            RuntimeError: If already running
            OSError: If the address cannot be bound
        """
        if self._server is not None:
            raise RuntimeError("WebSocket transport is already running")

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_frame_bytes,
            )
        except OSError as e:
            logger.error(
                "Cannot bind WebSocket listener",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise

        logger.info(
            "WebSocket listener started",
            extra={
                "host": self._host,
                "port": self.port,
                "max_connections": self._max_connections,
            },
        )

    async def stop(self) -> None:
        """Stop listening and close every open socket."""
        if self._server is None:
            return

        server, self._server = self._server, None
        logger.info("Stopping WebSocket listener", extra={"open_sessions": len(self._sessions)})
        server.close()
        await server.wait_closed()

    async def accept_session(self) -> TransportSession:
        """Wait for the next admitted client.

        Raises:
            RuntimeError: If the transport is not running
        """
        if self._server is None:
            raise RuntimeError("WebSocket transport is not running")
        return await self._pending.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        if len(self._sessions) >= self._max_connections:
            logger.warning(
                "Connection limit reached, rejecting client",
                extra={"remote": websocket.remote_address, "limit": self._max_connections},
            )
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Server is full")
            return

        session = WebSocketSession(websocket, f"ws-{uuid.uuid4().hex[:12]}")
        self._sessions[session.session_id] = session
        logger.info(
            "Client connected",
            extra={"session_id": session.session_id, "remote": websocket.remote_address},
        )
        self._pending.put_nowait(session)

        # The websockets library closes the socket once this handler returns
        try:
            await websocket.wait_closed()
        finally:
            del self._sessions[session.session_id]
