"""Unit tests for the WebSocket transport implementation.

Tests event framing, session send/receive behavior and transport lifecycle.
"""

import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.protocol import State

from chatserver.transport.websocket_protocol import (
    EventEnvelope,
    FrameDecodeError,
    decode_event,
    encode_event,
)
from chatserver.transport.websocket_transport import (
    CLOSE_TRY_AGAIN_LATER,
    WebSocketSession,
    WebSocketTransport,
)


class TestEventFraming:
    """Test JSON event envelope encoding and decoding."""

    def test_encode_event(self) -> None:
        frame = encode_event("new_message", {"content": "hi", "reactions": {}})
        assert json.loads(frame) == {
            "event": "new_message",
            "data": {"content": "hi", "reactions": {}},
        }

    def test_decode_event(self) -> None:
        envelope = decode_event('{"event": "search_messages", "data": "pizza"}')
        assert envelope.event == "search_messages"
        assert envelope.data == "pizza"

    def test_decode_event_without_data(self) -> None:
        assert decode_event('{"event": "user_join"}').data is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '["user_join"]',
            '{"data": {}}',
            '{"event": ""}',
            b'{"event": "user_join"}',
        ],
    )
    def test_decode_invalid_frame(self, raw: str | bytes) -> None:
        with pytest.raises(FrameDecodeError):
            decode_event(raw)

    def test_envelope_requires_event_name(self) -> None:
        with pytest.raises(ValueError):
            EventEnvelope(event="")


class TestWebSocketSession:
    """Test WebSocket session implementation."""

    @pytest.fixture
    def mock_websocket(self) -> MagicMock:
        """Create mock WebSocket connection."""
        ws = MagicMock()
        ws.state = State.OPEN
        ws.remote_address = ("127.0.0.1", 12345)
        ws.send = AsyncMock()
        ws.close = AsyncMock()
        return ws

    def test_session_initialization(self, mock_websocket: MagicMock) -> None:
        session = WebSocketSession(mock_websocket, "ws-test")

        assert session.session_id == "ws-test"
        assert session.is_connected is True

    @pytest.mark.asyncio
    async def test_send_event(self, mock_websocket: MagicMock) -> None:
        session = WebSocketSession(mock_websocket, "ws-test")

        await session.send_event("owner_status", True)

        mock_websocket.send.assert_called_once()
        sent = json.loads(mock_websocket.send.call_args[0][0])
        assert sent == {"event": "owner_status", "data": True}

    @pytest.mark.asyncio
    async def test_send_event_disconnected(self, mock_websocket: MagicMock) -> None:
        mock_websocket.state = State.CLOSED
        session = WebSocketSession(mock_websocket, "ws-test")

        with pytest.raises(ConnectionError, match="connection is closed"):
            await session.send_event("owner_status", True)

    @pytest.mark.asyncio
    async def test_receive_events_skips_invalid_frames(
        self, mock_websocket: MagicMock
    ) -> None:
        frames = [
            json.dumps({"event": "user_join", "data": {"username": "Alice"}}),
            "{broken",
            b"\x00\x01",
            json.dumps({"event": "send_message", "data": {"content": "hi"}}),
        ]

        async def mock_iter() -> AsyncGenerator[str | bytes]:
            for frame in frames:
                yield frame

        mock_websocket.__aiter__ = lambda self: mock_iter()

        session = WebSocketSession(mock_websocket, "ws-test")

        events = [event async for event in session.receive_events()]

        assert events == [
            ("user_join", {"username": "Alice"}),
            ("send_message", {"content": "hi"}),
        ]
        # No error frames are sent back
        mock_websocket.send.assert_not_called()
        assert session.is_connected is False

    @pytest.mark.asyncio
    async def test_close_session(self, mock_websocket: MagicMock) -> None:
        session = WebSocketSession(mock_websocket, "ws-test")

        await session.close()

        assert session.is_connected is False
        mock_websocket.close.assert_called_once()


class TestWebSocketTransport:
    """Test WebSocket transport server."""

    def test_transport_initialization(self) -> None:
        transport = WebSocketTransport(host="0.0.0.0", port=3000, max_connections=100)  # noqa: S104

        assert transport.transport_type == "websocket"
        assert transport.is_running is False
        assert transport.active_connections == 0

    @pytest.mark.asyncio
    async def test_transport_start_stop(self) -> None:
        transport = WebSocketTransport(host="127.0.0.1", port=0, max_connections=10)

        await transport.start()
        assert transport.is_running is True
        assert transport.port != 0

        await transport.stop()
        assert transport.is_running is False

    @pytest.mark.asyncio
    async def test_transport_double_start(self) -> None:
        transport = WebSocketTransport(host="127.0.0.1", port=0, max_connections=10)

        await transport.start()
        with pytest.raises(RuntimeError, match="already running"):
            await transport.start()

        await transport.stop()

    @pytest.mark.asyncio
    async def test_accept_session_not_running(self) -> None:
        transport = WebSocketTransport(host="127.0.0.1", port=0, max_connections=10)

        with pytest.raises(RuntimeError, match="not running"):
            await transport.accept_session()

    @pytest.mark.asyncio
    async def test_connection_limit_closes_with_try_again_later(self) -> None:
        transport = WebSocketTransport(host="127.0.0.1", port=0, max_connections=0)
        websocket = MagicMock()
        websocket.remote_address = ("127.0.0.1", 5555)
        websocket.close = AsyncMock()

        await transport._handle_connection(websocket)

        websocket.close.assert_called_once_with(
            code=CLOSE_TRY_AGAIN_LATER, reason="Server is full"
        )
        assert transport.active_connections == 0
