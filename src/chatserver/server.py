"""Chat session server with WebSocket transport and HTTP side endpoints.

Main server implementation that:
1. Starts the WebSocket transport
2. Serves health, metrics and upload endpoints over HTTP
3. Accepts client connections and assigns each a chat identity
4. Funnels every connect, event and disconnect through one dispatcher
5. Delivers coordinator output to per-connection outboxes
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from aiohttp.web import Application, AppRunner, TCPSite

from chatserver.config import ServerConfig
from chatserver.coordinator import SessionCoordinator
from chatserver.health import setup_health_routes
from chatserver.models import ServerSettings, new_id
from chatserver.protocol import Outbound
from chatserver.session import ConnectionSession
from chatserver.transport.base import Transport, TransportSession
from chatserver.transport.websocket_transport import WebSocketTransport
from chatserver.uploads import setup_upload_routes

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs") / "server.yaml"


class InboundKind(Enum):
    CONNECT = "connect"
    EVENT = "event"
    DISCONNECT = "disconnect"


@dataclass
class Inbound:
    """One item of the dispatcher queue."""

    kind: InboundKind
    user_id: str
    event: str = ""
    data: Any = None
    session: ConnectionSession | None = None
    processed: asyncio.Future[None] | None = None


class ChatServer:
    """Owns the session coordinator and the single event dispatcher.

    Every state change happens inside ``dispatch_loop``, which takes one
    queued item at a time and runs the coordinator synchronously, so no
    handler ever observes another handler's partial update.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(self, config: ServerConfig, coordinator: SessionCoordinator | None = None) -> None:
        """Initialize chat server.

        Args:
            config: Server configuration
            coordinator: Optional pre-created coordinator (for testing)
        """
        self.config = config
        self.coordinator = coordinator or SessionCoordinator(config.chat.to_settings())

        # Identity key → connection (transport handles stay inside ConnectionSession)
        self.sessions: dict[str, ConnectionSession] = {}

        self._inbox: asyncio.Queue[Inbound] = asyncio.Queue()
        self._dispatcher: asyncio.Task[None] | None = None
        self._session_tasks: set[asyncio.Task[None]] = set()

        logger.info(
            "Chat server initialized",
            extra={"server_name": config.chat.server_name},
        )

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    def current_settings(self) -> ServerSettings:
        """Snapshot of the live server settings."""
        return self.coordinator.settings.get()

    async def start(self) -> None:
        """Start the dispatcher task."""
        if self.is_running:
            raise RuntimeError("Chat server is already running")
        self._dispatcher = asyncio.create_task(self.dispatch_loop())

    async def stop(self) -> None:
        """Wait for open sessions to finish, then stop the dispatcher."""
        if self._session_tasks:
            logger.info("Waiting for sessions to complete", extra={"count": len(self._session_tasks)})
            await asyncio.gather(*self._session_tasks, return_exceptions=True)

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

    # === Dispatcher ===

    async def dispatch_loop(self) -> None:
        """Process queued items one at a time, for the lifetime of the server."""
        while True:
            item = await self._inbox.get()
            try:
                self._process(item)
            except Exception:
                logger.exception(
                    "Dispatcher failed to process item",
                    extra={"kind": item.kind.value, "user_id": item.user_id, "event": item.event},
                )
            finally:
                if item.processed is not None and not item.processed.done():
                    item.processed.set_result(None)

    def _process(self, item: Inbound) -> None:
        if item.kind is InboundKind.CONNECT:
            if item.session is None:
                raise ValueError(f"Connect for {item.user_id} carries no session")
            self.sessions[item.user_id] = item.session
            _, outbound = self.coordinator.connect(item.user_id)
        elif item.kind is InboundKind.EVENT:
            outbound = self.coordinator.handle(item.user_id, item.event, item.data)
        else:
            outbound = self.coordinator.disconnect(item.user_id)
            self.sessions.pop(item.user_id, None)

        self.deliver(outbound)

    def deliver(self, outbound: list[Outbound]) -> None:
        """Enqueue each outbound event on its recipients' outboxes, in order."""
        for item in outbound:
            for recipient in item.recipients:
                session = self.sessions.get(recipient)
                if session is None:
                    continue
                session.enqueue(item.event, item.data)

    def submit(self, item: Inbound) -> None:
        """Queue an item for the dispatcher."""
        self._inbox.put_nowait(item)

    # === Connections ===

    async def handle_session(self, transport_session: TransportSession) -> None:
        """Run one client connection from accept to disconnect.

        Args:
            transport_session: Accepted transport session
        """
        user_id = new_id()
        session = ConnectionSession(
            transport_session, user_id, outbox_size=self.config.websocket.outbox_size
        )

        logger.info(
            "Client connected",
            extra={"session_id": session.session_id, "user_id": user_id},
        )

        self.submit(Inbound(InboundKind.CONNECT, user_id, session=session))
        sender_task = asyncio.create_task(session.sender_loop())

        try:
            async for event, data in transport_session.receive_events():
                session.metrics.record_received()
                self.submit(Inbound(InboundKind.EVENT, user_id, event=event, data=data))

        except ConnectionError as e:
            logger.warning(
                "Connection lost",
                extra={"session_id": session.session_id, "error": str(e)},
            )
        except asyncio.CancelledError:
            logger.info("Session handler cancelled", extra={"session_id": session.session_id})
            raise
        finally:
            processed: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self.submit(Inbound(InboundKind.DISCONNECT, user_id, processed=processed))
            try:
                await asyncio.wait_for(processed, timeout=self.config.graceful_shutdown_timeout_s)
            except TimeoutError:
                logger.warning(
                    "Disconnect not processed before timeout",
                    extra={"session_id": session.session_id, "user_id": user_id},
                )

            sender_task.cancel()
            await asyncio.gather(sender_task, return_exceptions=True)
            await session.shutdown()

            logger.info("Session metrics", extra=session.get_metrics_summary())

    async def serve(self, transport: Transport) -> None:
        """Accept sessions from a running transport until cancelled."""
        while True:
            transport_session = await transport.accept_session()
            logger.info(
                "New session accepted",
                extra={
                    "session_id": transport_session.session_id,
                    "transport": transport.transport_type,
                },
            )
            task = asyncio.create_task(self.handle_session(transport_session))
            self._session_tasks.add(task)
            task.add_done_callback(self._session_tasks.discard)


def create_http_app(server: ChatServer) -> Application:
    """Build the HTTP application (health, metrics and uploads)."""
    app = Application()
    setup_health_routes(app, server.coordinator)
    setup_upload_routes(app, server.config.uploads, server.current_settings)
    return app


async def start_server(config_path: Path | None = None, server: ChatServer | None = None) -> None:
    """Start the chat server and run until cancelled.

    Args:
        config_path: Path to configuration file (defaults apply if missing)
        server: Optional pre-created chat server (for testing)

    Raises:
        OSError: If a port cannot be bound
    """
    config = ServerConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    if server is None:
        server = ChatServer(config)
    await server.start()

    ws_config = config.websocket
    transport = WebSocketTransport(
        host=ws_config.host,
        port=ws_config.port,
        max_connections=ws_config.max_connections,
        max_frame_bytes=ws_config.max_frame_bytes,
    )
    await transport.start()
    logger.info("WebSocket transport started", extra={"port": ws_config.port})

    runner: AppRunner | None = None
    if config.http.enabled:
        runner = AppRunner(create_http_app(server))
        await runner.setup()
        site = TCPSite(runner, config.http.host, config.http.port)
        await site.start()
        logger.info("HTTP server started", extra={"port": config.http.port})

    try:
        logger.info("Chat server ready", extra={"server_name": config.chat.server_name})
        await server.serve(transport)
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    except Exception as e:
        logger.exception("Server error", extra={"error": str(e)})
    finally:
        logger.info("Shutting down chat server")

        await transport.stop()
        logger.info("WebSocket transport stopped")

        if runner is not None:
            await runner.cleanup()
            logger.info("HTTP server stopped")

        await server.stop()
        logger.info("Chat server stopped")


def main() -> None:
    """Entry point for the chat server."""
    parser = argparse.ArgumentParser(description="Real-time chat session server")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to server config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Chat server interrupted")


if __name__ == "__main__":
    main()
