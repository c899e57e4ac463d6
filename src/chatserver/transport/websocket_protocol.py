"""WebSocket message framing.

Every frame is a JSON text message ``{"event": <name>, "data": <payload>}``
in both directions. Payload validation happens in the session coordinator;
the envelope only guarantees an event name is present.
"""

import json
from typing import Any

from pydantic import BaseModel, Field, ValidationError


class EventEnvelope(BaseModel):
    """Client ↔ Server: one named event with an arbitrary JSON payload."""

    event: str = Field(..., min_length=1, description="Event name")
    data: Any = Field(default=None, description="Event payload")


class FrameDecodeError(ValueError):
    """Raised when a frame is not a valid event envelope."""


def encode_event(event: str, data: Any) -> str:
    """Serialize an event to a text frame."""
    return EventEnvelope(event=event, data=data).model_dump_json()


def decode_event(raw: str | bytes) -> EventEnvelope:
    """Parse a text frame into an event envelope.

    Raises:
        FrameDecodeError: If the frame is binary, not JSON, or lacks an event name
    """
    if not isinstance(raw, str):
        raise FrameDecodeError("Binary frames are not supported")

    try:
        return EventEnvelope.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON: {e}") from e
    except ValidationError as e:
        raise FrameDecodeError(f"Invalid event envelope: {e}") from e
