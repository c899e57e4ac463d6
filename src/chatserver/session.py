"""Per-connection delivery and bookkeeping.

Wraps a transport session with a bounded outbox and a sender loop, so the
single event dispatcher only ever enqueues and never waits on a slow client.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from chatserver.metrics import get_metrics_collector
from chatserver.transport.base import TransportSession

logger = logging.getLogger(__name__)


@dataclass
class ConnectionMetrics:
    """Connection activity counters."""

    events_received: int = 0
    events_sent: int = 0
    events_dropped: int = 0  # Outbox full

    session_start_ts: float = field(default_factory=time.monotonic)
    session_end_ts: float | None = None
    last_event_received_ts: float | None = None

    def record_received(self) -> None:
        self.events_received += 1
        self.last_event_received_ts = time.monotonic()

    def finalize(self) -> None:
        """Mark connection as complete and record end time."""
        self.session_end_ts = time.monotonic()

    @property
    def duration_s(self) -> float:
        return (self.session_end_ts or time.monotonic()) - self.session_start_ts


class ConnectionSession:
    """One client connection as seen by the server runtime.

    ``user_id`` is the chat identity assigned by the coordinator; the
    transport's ``session_id`` is only used for logging.
    """

    def __init__(
        self, transport_session: TransportSession, user_id: str, outbox_size: int = 256
    ) -> None:
        """Initialize connection session.

        Args:
            transport_session: Underlying transport session
            user_id: Chat identity of this connection
            outbox_size: Maximum number of undelivered outbound events
        """
        self.transport = transport_session
        self.user_id = user_id
        self.metrics = ConnectionMetrics()

        self.outbox: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=outbox_size)

        self._shutdown_event = asyncio.Event()

    @property
    def session_id(self) -> str:
        """Get session ID from transport."""
        return self.transport.session_id

    @property
    def is_active(self) -> bool:
        """Check if the connection is open and not shut down."""
        return self.transport.is_connected and not self._shutdown_event.is_set()

    def enqueue(self, event: str, data: Any) -> bool:
        """Queue an outbound event without waiting.

        Returns:
            True if queued, False if the connection is gone or the outbox is full
        """
        if self._shutdown_event.is_set():
            return False

        try:
            self.outbox.put_nowait((event, data))
        except asyncio.QueueFull:
            self.metrics.events_dropped += 1
            get_metrics_collector().record_outbound_dropped()
            logger.warning(
                "Outbox full, dropping event",
                extra={"session_id": self.session_id, "user_id": self.user_id, "event": event},
            )
            return False
        return True

    async def sender_loop(self) -> None:
        """Deliver queued events to the client in order.

        Runs for the lifetime of the connection.
        """
        try:
            while self.is_active:
                try:
                    # Timeout so shutdown is noticed while idle
                    event, data = await asyncio.wait_for(self.outbox.get(), timeout=0.1)
                except TimeoutError:
                    continue

                try:
                    await self.transport.send_event(event, data)
                except ConnectionError:
                    # Transport connection lost
                    break
                self.metrics.events_sent += 1

        except asyncio.CancelledError:
            # Clean shutdown
            pass

    async def shutdown(self) -> None:
        """Close the transport and discard undelivered events (idempotent)."""
        if self._shutdown_event.is_set():
            return

        self._shutdown_event.set()

        await self.transport.close()
        self.metrics.finalize()

        while not self.outbox.empty():
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                break

    def get_metrics_summary(self) -> dict[str, str | float | int | None]:
        """Connection metrics summary for logging."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "events_received": self.metrics.events_received,
            "events_sent": self.metrics.events_sent,
            "events_dropped": self.metrics.events_dropped,
            "session_duration_s": self.metrics.duration_s,
        }
