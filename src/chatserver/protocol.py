"""Chat event catalog and inbound payload schemas.

Event names are shared by client and server. Inbound payloads are validated
by the models below (camelCase wire names); outbound events are produced by
the session coordinator as ``Outbound`` records addressed to explicit
identities.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import Field

from chatserver.models import WireModel


class ClientEvent(StrEnum):
    """Client → Server events."""

    USER_JOIN = "user_join"
    CHANGE_USERNAME = "change_username"
    CHANGE_BUBBLE_COLOR = "change_bubble_color"
    SEND_MESSAGE = "send_message"
    EDIT_MESSAGE = "edit_message"
    DELETE_MESSAGE = "delete_message"
    ADD_REACTION = "add_reaction"
    JOIN_VOICE = "join_voice"
    LEAVE_VOICE = "leave_voice"
    UPDATE_SERVER_SETTINGS = "update_server_settings"
    SEARCH_MESSAGES = "search_messages"
    WEBRTC_OFFER = "webrtc_offer"
    WEBRTC_ANSWER = "webrtc_answer"
    WEBRTC_ICE_CANDIDATE = "webrtc_ice_candidate"


class ServerEvent(StrEnum):
    """Server → Client events."""

    OWNER_STATUS = "owner_status"
    SERVER_SETTINGS = "server_settings"
    USER_DATA = "user_data"
    MESSAGE_HISTORY = "message_history"
    USERS_UPDATE = "users_update"
    NEW_MESSAGE = "new_message"
    MESSAGE_EDITED = "message_edited"
    MESSAGE_DELETED = "message_deleted"
    REACTION_ADDED = "reaction_added"
    VOICE_USER_JOINED = "voice_user_joined"
    VOICE_USER_LEFT = "voice_user_left"
    SEARCH_RESULTS = "search_results"
    WEBRTC_OFFER = "webrtc_offer"
    WEBRTC_ANSWER = "webrtc_answer"
    WEBRTC_ICE_CANDIDATE = "webrtc_ice_candidate"


# Signaling event → payload key carrying the negotiation blob
SIGNAL_PAYLOAD_KEYS: dict[str, str] = {
    ClientEvent.WEBRTC_OFFER: "offer",
    ClientEvent.WEBRTC_ANSWER: "answer",
    ClientEvent.WEBRTC_ICE_CANDIDATE: "candidate",
}


@dataclass(frozen=True)
class Outbound:
    """An event to deliver to a fixed set of connection identities.

    ``data`` is a JSON-ready snapshot taken when the event was produced.
    """

    event: str
    data: Any
    recipients: tuple[str, ...]


class UserJoinPayload(WireModel):
    """Payload of ``user_join``."""

    username: Any = None
    bubble_color: Any = None


class SendMessagePayload(WireModel):
    """Payload of ``send_message``."""

    content: str = ""
    formatting: dict[str, Any] | None = None
    attachment: dict[str, Any] | None = None
    reply_to: str | None = None


class EditMessagePayload(WireModel):
    """Payload of ``edit_message``."""

    message_id: str
    new_content: str = ""


class ReactionPayload(WireModel):
    """Payload of ``add_reaction``."""

    message_id: str
    emoji: str = Field(..., min_length=1)


class SignalPayload(WireModel):
    """Payload of the three ``webrtc_*`` events; the blob is opaque."""

    target: str = Field(..., min_length=1)
    offer: Any = None
    answer: Any = None
    candidate: Any = None
