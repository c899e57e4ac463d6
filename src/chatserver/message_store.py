"""Append-only ordered message log with editing, deletion, reactions and search."""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

from chatserver.errors import DeniedError, NotFoundError, ValidationRejectedError
from chatserver.models import SYSTEM_USERNAME, Message, User, new_id, utc_now
from chatserver.text import linkify, sanitize_input

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReactionState:
    """Result of a reaction request."""

    message_id: str
    emoji: str
    users: tuple[str, ...]
    added: bool  # False when the username had already reacted with this emoji


class MessageStore:
    """Ordered message log keyed by message id.

    Ids are assigned here and never reused. ``reply_to`` is stored as given
    and may point at a deleted message.
    """

    def __init__(self) -> None:
        self._messages: OrderedDict[str, Message] = OrderedDict()
        self._issued_ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def get(self, message_id: str) -> Message | None:
        message = self._messages.get(message_id)
        return message.model_copy(deep=True) if message is not None else None

    def append(self, message: Message) -> Message:
        """Store a message, assigning a fresh id and timestamp.

        Returns:
            Snapshot of the stored message
        """
        message_id = new_id()
        while message_id in self._issued_ids:
            message_id = new_id()
        self._issued_ids.add(message_id)

        stored = message.model_copy(deep=True, update={"id": message_id, "timestamp": utc_now()})
        self._messages[message_id] = stored
        return stored.model_copy(deep=True)

    def append_system(self, content: str) -> Message:
        """Append a server-generated notice."""
        return self.append(Message(type="system", content=content, username=SYSTEM_USERNAME))

    def append_user_message(
        self,
        author: User,
        content: object,
        formatting: dict[str, Any] | None = None,
        attachment: dict[str, Any] | None = None,
        reply_to: str | None = None,
        max_length: int | None = None,
    ) -> Message:
        """Sanitize, linkify and append a user's message.

        Raises:
            ValidationRejectedError: If the message is empty without an attachment
                or longer than ``max_length``
        """
        text = self._checked_text(content, max_length)
        if not text and not attachment:
            raise ValidationRejectedError("Empty message without attachment")

        return self.append(
            Message(
                type="user",
                content=linkify(text),
                username=author.username,
                user_id=author.id,
                bubble_color=author.bubble_color,
                formatting=formatting or {},
                attachment=attachment,
                reply_to=reply_to,
                reactions={},
            )
        )

    def edit(
        self,
        message_id: str,
        actor_id: str,
        new_content: object,
        max_length: int | None = None,
    ) -> Message:
        """Replace the content of the actor's own message.

        Raises:
            NotFoundError: If the message does not exist
            DeniedError: If the actor did not author the message
            ValidationRejectedError: If the new content is too long
        """
        message = self._messages.get(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        if message.user_id is None or message.user_id != actor_id:
            raise DeniedError(f"{actor_id} cannot edit message {message_id}")

        message.content = linkify(self._checked_text(new_content, max_length))
        message.edited = True
        message.edited_at = utc_now()
        return message.model_copy(deep=True)

    def delete(self, message_id: str, actor_id: str, is_owner_actor: bool = False) -> bool:
        """Remove a message authored by the actor, or any message for the owner.

        Returns:
            True if a message was removed, False if it did not exist

        Raises:
            DeniedError: If the actor is neither the author nor the owner
        """
        message = self._messages.get(message_id)
        if message is None:
            return False
        if not is_owner_actor and (message.user_id is None or message.user_id != actor_id):
            raise DeniedError(f"{actor_id} cannot delete message {message_id}")

        del self._messages[message_id]
        logger.debug(
            "Message deleted",
            extra={"message_id": message_id, "actor_id": actor_id, "as_owner": is_owner_actor},
        )
        return True

    def add_reaction(self, message_id: str, username: str, emoji: str) -> ReactionState:
        """Record ``username`` reacting with ``emoji``.

        Reacting twice with the same emoji is a no-op (``added`` is False).

        Raises:
            NotFoundError: If the message does not exist
        """
        message = self._messages.get(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")

        if message.reactions is None:
            message.reactions = {}
        users = message.reactions.setdefault(emoji, [])

        added = username not in users
        if added:
            users.append(username)

        return ReactionState(
            message_id=message_id, emoji=emoji, users=tuple(users), added=added
        )

    def search(self, query: object) -> list[Message]:
        """Case-insensitive substring search over content and username.

        The query is sanitized like message content; an empty query matches
        every message. Results keep log order.
        """
        needle = sanitize_input(query).lower()
        return [
            message.model_copy(deep=True)
            for message in self._messages.values()
            if needle in message.content.lower() or needle in message.username.lower()
        ]

    def history(self) -> list[Message]:
        """Snapshot of the full log in order."""
        return [message.model_copy(deep=True) for message in self._messages.values()]

    @staticmethod
    def _checked_text(content: object, max_length: int | None) -> str:
        text = sanitize_input(content)
        if max_length is not None and len(text) > max_length:
            raise ValidationRejectedError(
                f"Message length {len(text)} exceeds limit {max_length}"
            )
        return text
