"""Domain records shared by the chat core.

Records are Pydantic models with snake_case attributes and camelCase wire
names (``bubbleColor``, ``isOwner``, ``ownerId`` ...). ``to_wire()`` returns
a JSON-ready snapshot that later mutations cannot reach.
"""

import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SYSTEM_USERNAME = "System"
DEFAULT_USERNAME = "Anonymous"
DEFAULT_BUBBLE_COLOR = "#007bff"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


class WireModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, exclude_none: bool = False) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict using wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)


class User(WireModel):
    """A connected, joined participant."""

    id: str
    username: str = DEFAULT_USERNAME
    bubble_color: str = DEFAULT_BUBBLE_COLOR
    is_owner: bool = False
    join_time: datetime = Field(default_factory=utc_now)


class Message(WireModel):
    """An entry of the shared message log.

    System messages carry no ``user_id``; ``reactions`` maps an emoji to the
    usernames that reacted with it, in first-reaction order.
    """

    id: str = ""
    type: Literal["system", "user"] = "user"
    content: str = ""
    username: str = SYSTEM_USERNAME
    user_id: str | None = None
    bubble_color: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    formatting: dict[str, Any] | None = None
    attachment: dict[str, Any] | None = None
    reply_to: str | None = None
    reactions: dict[str, list[str]] | None = None
    edited: bool | None = None
    edited_at: datetime | None = None

    def to_wire(self, exclude_none: bool = True) -> dict[str, Any]:
        return super().to_wire(exclude_none=exclude_none)


class ServerSettings(WireModel):
    """Server-wide policy and the current owner identity."""

    allow_history_for_new_users: bool = True
    max_message_length: int = 1000
    allow_attachments: bool = True
    allow_voice_chat: bool = True
    server_name: str = "Chat Server"
    owner_id: str | None = None


class ServerSettingsPatch(WireModel):
    """Partial settings update sent by the owner.

    ``ownerId`` is not part of the patch; ownership only changes through
    succession. Unknown keys are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", strict=True
    )

    allow_history_for_new_users: bool | None = None
    max_message_length: int | None = Field(default=None, ge=1)
    allow_attachments: bool | None = None
    allow_voice_chat: bool | None = None
    server_name: str | None = Field(default=None, min_length=1)

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set by the patch, keyed by attribute name."""
        return self.model_dump(exclude_unset=True, exclude_none=True)
