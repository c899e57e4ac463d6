"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- A running chat server (dispatcher + WebSocket transport)
- Client helpers that read events until a predicate matches
"""

import asyncio
import json
import socket
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from websockets.asyncio.client import ClientConnection

from chatserver.config import ServerConfig, UploadConfig
from chatserver.server import ChatServer
from chatserver.transport.websocket_transport import WebSocketTransport


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


async def send_event(ws: ClientConnection, event: str, data: Any = None) -> None:
    await ws.send(json.dumps({"event": event, "data": data}))


async def receive_until(
    ws: ClientConnection, event: str, timeout: float = 5.0
) -> tuple[Any, list[str]]:
    """Read frames until ``event`` arrives.

    Returns:
        (payload of ``event``, names of every event read, in order)
    """
    seen: list[str] = []

    async def read() -> Any:
        while True:
            frame = json.loads(await ws.recv())
            seen.append(frame["event"])
            if frame["event"] == event:
                return frame["data"]

    data = await asyncio.wait_for(read(), timeout=timeout)
    return data, seen


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(
        uploads=UploadConfig(directory=tmp_path / "uploads"),
        graceful_shutdown_timeout_s=2,
    )


@pytest.fixture
async def chat_server(server_config: ServerConfig) -> AsyncIterator[tuple[ChatServer, str]]:
    """Running chat server on a free port; yields (server, ws url)."""
    server = ChatServer(server_config)
    transport = WebSocketTransport(host="127.0.0.1", port=0, max_connections=3)

    await server.start()
    await transport.start()
    accept_task = asyncio.create_task(server.serve(transport))

    yield server, f"ws://127.0.0.1:{transport.port}"

    accept_task.cancel()
    await asyncio.gather(accept_task, return_exceptions=True)
    await transport.stop()
    await server.stop()
