"""Session coordinator: per-connection state machine and broadcast decisions.

Every inbound event enters here. The coordinator validates the event against
the connection's state and the four stateful components, applies the change,
and returns the outbound events to deliver, each addressed to an explicit
tuple of connection identities resolved at the moment the event was
produced.

Event handlers are synchronous and never suspend, so a caller that feeds
events one at a time (see ``ChatServer``) gets a total order over every
state change and every broadcast.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from chatserver.errors import (
    ChatError,
    NotFoundError,
    PolicyDisabledError,
    ValidationRejectedError,
)
from chatserver.message_store import MessageStore
from chatserver.metrics import get_metrics_collector
from chatserver.models import ServerSettings, User, new_id
from chatserver.presence import PresenceRegistry
from chatserver.protocol import (
    SIGNAL_PAYLOAD_KEYS,
    ClientEvent,
    EditMessagePayload,
    Outbound,
    ReactionPayload,
    SendMessagePayload,
    ServerEvent,
    SignalPayload,
    UserJoinPayload,
)
from chatserver.settings_store import SettingsStore
from chatserver.signaling import SignalingRelay
from chatserver.voice_rooms import VoiceRoomRegistry

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state machine states.

    State Transitions:
    - CONNECTED → JOINED (on user_join)
    - JOINED → JOINED (re-entrant user_join)
    - * → DISCONNECTED (on disconnect, terminal)
    """

    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.CONNECTED: {ConnectionState.JOINED, ConnectionState.DISCONNECTED},
    ConnectionState.JOINED: {ConnectionState.JOINED, ConnectionState.DISCONNECTED},
    ConnectionState.DISCONNECTED: set(),
}

Handler = Callable[[str, Any], list[Outbound]]


class SessionCoordinator:
    """Orchestrates settings, presence, messages, voice rooms and signaling.

    Thread-safety: This class is NOT thread-safe. Feed it from a single
    task (one event at a time).
    """

    def __init__(self, settings: ServerSettings | None = None) -> None:
        self.settings = SettingsStore(settings)
        self.presence = PresenceRegistry()
        self.messages = MessageStore()
        self.voice_rooms = VoiceRoomRegistry()
        self.signaling = SignalingRelay(self.is_connected)

        # Insertion-ordered: connection order
        self._connections: dict[str, ConnectionState] = {}

        self._handlers: dict[str, Handler] = {
            ClientEvent.USER_JOIN: self._on_user_join,
            ClientEvent.CHANGE_USERNAME: self._on_change_username,
            ClientEvent.CHANGE_BUBBLE_COLOR: self._on_change_bubble_color,
            ClientEvent.SEND_MESSAGE: self._on_send_message,
            ClientEvent.EDIT_MESSAGE: self._on_edit_message,
            ClientEvent.DELETE_MESSAGE: self._on_delete_message,
            ClientEvent.ADD_REACTION: self._on_add_reaction,
            ClientEvent.JOIN_VOICE: self._on_join_voice,
            ClientEvent.LEAVE_VOICE: self._on_leave_voice,
            ClientEvent.UPDATE_SERVER_SETTINGS: self._on_update_server_settings,
            ClientEvent.SEARCH_MESSAGES: self._on_search_messages,
        }
        for kind in SIGNAL_PAYLOAD_KEYS:
            self._handlers[kind] = self._signal_handler(kind)

    # === Connection lifecycle ===

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._connections

    def state_of(self, user_id: str) -> ConnectionState:
        """Current state of a connection (DISCONNECTED if unknown)."""
        return self._connections.get(user_id, ConnectionState.DISCONNECTED)

    def connection_ids(self) -> list[str]:
        """Open connections in connection order."""
        return list(self._connections)

    def connect(self, user_id: str | None = None) -> tuple[str, list[Outbound]]:
        """Open a connection.

        If nobody owns the server, the new connection becomes owner-elect.
        The current settings are always sent to it.

        Args:
            user_id: Identity to use; a fresh one is generated if omitted

        Returns:
            (identity, outbound events)

        Raises:
            ValueError: If the identity is already connected
        """
        user_id = user_id or new_id()
        if user_id in self._connections:
            raise ValueError(f"Connection {user_id} is already open")

        self._connections[user_id] = ConnectionState.CONNECTED
        get_metrics_collector().record_connection_open()
        logger.info("Connection opened", extra={"user_id": user_id})

        outbound = []
        if self.settings.owner_id is None:
            self.settings.set_owner(user_id)
            outbound.append(self._to(user_id, ServerEvent.OWNER_STATUS, True))
        outbound.append(
            self._to(user_id, ServerEvent.SERVER_SETTINGS, self.settings.get().to_wire())
        )
        return user_id, outbound

    def disconnect(self, user_id: str) -> list[Outbound]:
        """Close a connection, cleaning up presence, voice rooms and ownership.

        Disconnecting an unknown or already closed connection is a no-op.
        """
        state = self._connections.pop(user_id, None)
        if state is None:
            return []

        self._log_transition(user_id, state, ConnectionState.DISCONNECTED)
        get_metrics_collector().record_connection_closed()

        outbound: list[Outbound] = []
        successor = None
        joined = user_id in self.presence

        if joined:
            user, successor = self.presence.unregister(user_id)

            for room_id in self.voice_rooms.purge_user(user_id):
                outbound.append(
                    Outbound(
                        event=ServerEvent.VOICE_USER_LEFT,
                        data=user_id,
                        recipients=tuple(self.voice_rooms.members(room_id)),
                    )
                )

            notice = self.messages.append_system(f"{user.username} left the chat")
            outbound.append(self._everyone(ServerEvent.NEW_MESSAGE, notice.to_wire()))
            outbound.append(self._everyone(ServerEvent.USERS_UPDATE, self._users_wire()))
            get_metrics_collector().set_users_joined(len(self.presence))

        if self.settings.owner_id == user_id:
            # Owner-elect that never joined: hand over to the earliest joined user
            if successor is None and not joined:
                successor = self.presence.promote_earliest()
                if successor is not None:
                    outbound.append(self._everyone(ServerEvent.USERS_UPDATE, self._users_wire()))

            self.settings.set_owner(successor.id if successor else None)
            if successor is not None:
                outbound.append(self._to(successor.id, ServerEvent.OWNER_STATUS, True))
            outbound.append(
                self._everyone(ServerEvent.SERVER_SETTINGS, self.settings.get().to_wire())
            )

        logger.info(
            "Connection closed",
            extra={
                "user_id": user_id,
                "was_joined": joined,
                "new_owner": successor.id if successor else None,
            },
        )
        return self._deliverable(outbound)

    # === Inbound events ===

    def handle(self, user_id: str, event: str, data: Any = None) -> list[Outbound]:
        """Apply one inbound event from a connection.

        Invalid, unauthorized or policy-disabled events are discarded: no
        state change and no outbound events. Unexpected faults are logged and
        the event is discarded too.

        Returns:
            Outbound events to deliver, in order
        """
        started = time.perf_counter()

        handler = self._handlers.get(event)
        if handler is None:
            return self._drop(user_id, event, "UNKNOWN_EVENT")

        state = self._connections.get(user_id)
        if state is None:
            return self._drop(user_id, event, "NOT_CONNECTED")
        if state is not ConnectionState.JOINED and event != ClientEvent.USER_JOIN:
            return self._drop(user_id, event, "NOT_JOINED")

        try:
            outbound = handler(user_id, data)
        except ChatError as e:
            return self._drop(user_id, event, e.code, detail=str(e))
        except ValidationError as e:
            return self._drop(user_id, event, ValidationRejectedError.code, detail=str(e))
        except Exception:
            logger.exception(
                "Unexpected error handling event",
                extra={"user_id": user_id, "event": event},
            )
            return self._drop(user_id, event, "INTERNAL_ERROR")

        get_metrics_collector().record_event(event, time.perf_counter() - started)
        return self._deliverable(outbound)

    def _on_user_join(self, user_id: str, data: Any) -> list[Outbound]:
        payload = self._parse(UserJoinPayload, data if data is not None else {})
        owner_before = self.settings.owner_id

        user = self.presence.register(
            user_id, payload.username, payload.bubble_color, owner_id=owner_before
        )
        self._transition(user_id, ConnectionState.JOINED)
        get_metrics_collector().set_users_joined(len(self.presence))

        outbound = []
        if user.is_owner and owner_before != user_id:
            self.settings.set_owner(user_id)
            outbound.append(self._to(user_id, ServerEvent.OWNER_STATUS, True))
            outbound.append(
                self._everyone(ServerEvent.SERVER_SETTINGS, self.settings.get().to_wire())
            )

        outbound.append(self._to(user_id, ServerEvent.USER_DATA, user.to_wire()))

        if self.settings.get().allow_history_for_new_users:
            history = [message.to_wire() for message in self.messages.history()]
            outbound.append(self._to(user_id, ServerEvent.MESSAGE_HISTORY, history))

        outbound.append(self._everyone(ServerEvent.USERS_UPDATE, self._users_wire()))

        notice = self.messages.append_system(f"{user.username} joined the chat")
        outbound.append(self._everyone(ServerEvent.NEW_MESSAGE, notice.to_wire()))
        return outbound

    def _on_change_username(self, user_id: str, data: Any) -> list[Outbound]:
        old_name = self._joined_user(user_id).username
        user = self.presence.rename(user_id, data)

        notice = self.messages.append_system(
            f"{old_name} changed their name to {user.username}"
        )
        return [
            self._everyone(ServerEvent.NEW_MESSAGE, notice.to_wire()),
            self._everyone(ServerEvent.USERS_UPDATE, self._users_wire()),
        ]

    def _on_change_bubble_color(self, user_id: str, data: Any) -> list[Outbound]:
        if not isinstance(data, str):
            raise ValidationRejectedError("Bubble color must be a string")

        self.presence.recolor(user_id, data)
        return [self._everyone(ServerEvent.USERS_UPDATE, self._users_wire())]

    def _on_send_message(self, user_id: str, data: Any) -> list[Outbound]:
        payload = self._parse(SendMessagePayload, data)
        settings = self.settings.get()

        if payload.attachment and not settings.allow_attachments:
            raise PolicyDisabledError("Attachments are disabled")

        message = self.messages.append_user_message(
            self._joined_user(user_id),
            payload.content,
            formatting=payload.formatting,
            attachment=payload.attachment,
            reply_to=payload.reply_to,
            max_length=settings.max_message_length,
        )
        get_metrics_collector().record_message()
        return [self._everyone(ServerEvent.NEW_MESSAGE, message.to_wire())]

    def _on_edit_message(self, user_id: str, data: Any) -> list[Outbound]:
        payload = self._parse(EditMessagePayload, data)

        message = self.messages.edit(
            payload.message_id,
            user_id,
            payload.new_content,
            max_length=self.settings.get().max_message_length,
        )
        wire = message.to_wire()
        return [
            self._everyone(
                ServerEvent.MESSAGE_EDITED,
                {
                    "messageId": message.id,
                    "newContent": message.content,
                    "edited": True,
                    "editedAt": wire["editedAt"],
                },
            )
        ]

    def _on_delete_message(self, user_id: str, data: Any) -> list[Outbound]:
        if not isinstance(data, str):
            raise ValidationRejectedError("Message id must be a string")

        is_owner = self.settings.owner_id == user_id
        if not self.messages.delete(data, user_id, is_owner_actor=is_owner):
            raise NotFoundError(f"Message {data} not found")
        return [self._everyone(ServerEvent.MESSAGE_DELETED, data)]

    def _on_add_reaction(self, user_id: str, data: Any) -> list[Outbound]:
        payload = self._parse(ReactionPayload, data)
        user = self._joined_user(user_id)

        reaction = self.messages.add_reaction(payload.message_id, user.username, payload.emoji)
        if not reaction.added:
            return []
        return [
            self._everyone(
                ServerEvent.REACTION_ADDED,
                {
                    "messageId": reaction.message_id,
                    "emoji": reaction.emoji,
                    "users": list(reaction.users),
                },
            )
        ]

    def _on_join_voice(self, user_id: str, data: Any) -> list[Outbound]:
        room_id = self._room_id(data)
        if not self.settings.get().allow_voice_chat:
            raise PolicyDisabledError("Voice chat is disabled")

        user = self._joined_user(user_id)
        members = self.voice_rooms.join(room_id, user_id)
        return [
            Outbound(
                event=ServerEvent.VOICE_USER_JOINED,
                data={"userId": user_id, "username": user.username},
                recipients=tuple(members),
            )
        ]

    def _on_leave_voice(self, user_id: str, data: Any) -> list[Outbound]:
        room_id = self._room_id(data)
        if not self.voice_rooms.leave(room_id, user_id):
            raise NotFoundError(f"{user_id} is not in voice room {room_id}")

        return [
            Outbound(
                event=ServerEvent.VOICE_USER_LEFT,
                data=user_id,
                recipients=tuple(self.voice_rooms.members(room_id)),
            )
        ]

    def _on_update_server_settings(self, user_id: str, data: Any) -> list[Outbound]:
        settings = self.settings.update(user_id, data)
        return [self._everyone(ServerEvent.SERVER_SETTINGS, settings.to_wire())]

    def _on_search_messages(self, user_id: str, data: Any) -> list[Outbound]:
        results = [message.to_wire() for message in self.messages.search(data)]
        return [self._to(user_id, ServerEvent.SEARCH_RESULTS, results)]

    def _signal_handler(self, kind: str) -> Handler:
        key = SIGNAL_PAYLOAD_KEYS[kind]

        def handle_signal(user_id: str, data: Any) -> list[Outbound]:
            payload = self._parse(SignalPayload, data)
            forwarded = self.signaling.relay(kind, payload.target, user_id, getattr(payload, key))
            if forwarded is None:
                raise NotFoundError(f"Signaling target {payload.target} is not connected")
            return [forwarded]

        return handle_signal

    # === Helpers ===

    def stats(self) -> dict[str, Any]:
        """Counts of the shared state for health reporting."""
        return {
            "connections": len(self._connections),
            "users": len(self.presence),
            "messages": len(self.messages),
            "voice_rooms": len(self.voice_rooms),
            "has_owner": self.settings.owner_id is not None,
        }

    def _transition(self, user_id: str, new_state: ConnectionState) -> None:
        old_state = self._connections[user_id]
        if new_state not in VALID_TRANSITIONS[old_state]:
            raise ValueError(f"Invalid state transition: {old_state.value} → {new_state.value}")
        self._connections[user_id] = new_state
        self._log_transition(user_id, old_state, new_state)

    def _log_transition(
        self, user_id: str, old_state: ConnectionState, new_state: ConnectionState
    ) -> None:
        logger.debug(
            "Connection state transition",
            extra={
                "user_id": user_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    def _joined_user(self, user_id: str) -> User:
        user = self.presence.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} is not registered")
        return user

    def _users_wire(self) -> list[dict[str, Any]]:
        return [user.to_wire() for user in self.presence.list()]

    def _to(self, user_id: str, event: str, data: Any) -> Outbound:
        return Outbound(event=event, data=data, recipients=(user_id,))

    def _everyone(self, event: str, data: Any) -> Outbound:
        return Outbound(event=event, data=data, recipients=tuple(self._connections))

    def _drop(
        self, user_id: str, event: str, reason: str, detail: str | None = None
    ) -> list[Outbound]:
        logger.debug(
            "Event dropped",
            extra={"user_id": user_id, "event": event, "reason": reason, "detail": detail},
        )
        get_metrics_collector().record_event_dropped(event, reason)
        return []

    @staticmethod
    def _parse(model: type[BaseModel], data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValidationRejectedError(f"{model.__name__} expects an object payload")
        return model.model_validate(data)

    @staticmethod
    def _room_id(data: Any) -> str:
        if isinstance(data, bool) or not isinstance(data, str | int):
            raise ValidationRejectedError("Room id must be a string or integer")
        room_id = str(data)
        if not room_id:
            raise ValidationRejectedError("Room id must not be empty")
        return room_id

    @staticmethod
    def _deliverable(outbound: list[Outbound]) -> list[Outbound]:
        return [item for item in outbound if item.recipients]
