"""Connected-user presence and ownership succession."""

import logging

from chatserver.errors import NotFoundError
from chatserver.models import DEFAULT_BUBBLE_COLOR, DEFAULT_USERNAME, User
from chatserver.text import sanitize_input

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Tracks joined users keyed by identity.

    The registry keeps users in join order (dict insertion order), which is
    both the snapshot order of ``list()`` and the succession order when the
    owner leaves: the earliest still-connected user is promoted.
    """

    def __init__(self) -> None:
        self._users: dict[str, User] = {}

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._users

    def get(self, user_id: str) -> User | None:
        """Return a snapshot of the user, or None if not registered."""
        user = self._users.get(user_id)
        return user.model_copy() if user is not None else None

    def register(
        self,
        user_id: str,
        username: object = None,
        bubble_color: object = None,
        owner_id: str | None = None,
    ) -> User:
        """Register (or re-register) a user.

        The user becomes owner iff there is no owner yet or the current owner
        identity is this connection (owner-elect on connect). Re-registering
        keeps the original join position and join time.

        Args:
            user_id: Connection identity
            username: Requested display name (sanitized, defaults to Anonymous)
            bubble_color: Display accent; not validated
            owner_id: Current owner identity from the settings

        Returns:
            Snapshot of the registered user
        """
        name = sanitize_input(username) or DEFAULT_USERNAME
        color = bubble_color if isinstance(bubble_color, str) and bubble_color else None
        is_owner = owner_id is None or owner_id == user_id

        existing = self._users.get(user_id)
        if existing is not None:
            existing.username = name
            existing.bubble_color = color or existing.bubble_color
            existing.is_owner = existing.is_owner or is_owner
            logger.info("User re-joined", extra={"user_id": user_id, "username": name})
            return existing.model_copy()

        user = User(
            id=user_id,
            username=name,
            bubble_color=color or DEFAULT_BUBBLE_COLOR,
            is_owner=is_owner,
        )
        self._users[user_id] = user
        logger.info(
            "User registered",
            extra={"user_id": user_id, "username": name, "is_owner": is_owner},
        )
        return user.model_copy()

    def rename(self, user_id: str, new_name: object) -> User:
        """Change a user's display name.

        Raises:
            NotFoundError: If the user is not registered
        """
        user = self._require(user_id)
        user.username = sanitize_input(new_name) or DEFAULT_USERNAME
        return user.model_copy()

    def recolor(self, user_id: str, color: str) -> User:
        """Change a user's bubble color.

        Raises:
            NotFoundError: If the user is not registered
        """
        user = self._require(user_id)
        user.bubble_color = color
        return user.model_copy()

    def unregister(self, user_id: str) -> tuple[User, User | None]:
        """Remove a user, promoting a successor if the owner left.

        Returns:
            (removed user, promoted successor or None)

        Raises:
            NotFoundError: If the user is not registered
        """
        user = self._users.pop(user_id, None)
        if user is None:
            raise NotFoundError(f"User {user_id} is not registered")

        successor = None
        if user.is_owner:
            successor = self.promote_earliest()

        logger.info(
            "User unregistered",
            extra={
                "user_id": user_id,
                "was_owner": user.is_owner,
                "successor": successor.id if successor else None,
            },
        )
        return user, successor

    def promote_earliest(self) -> User | None:
        """Make the earliest-joined remaining user the owner.

        Any other owner flag is cleared so at most one user is owner.

        Returns:
            Snapshot of the new owner, or None if nobody is registered
        """
        candidate = next(iter(self._users.values()), None)
        for user in self._users.values():
            user.is_owner = user is candidate
        return candidate.model_copy() if candidate is not None else None

    def list(self) -> list[User]:
        """Snapshot of all users in join order."""
        return [user.model_copy() for user in self._users.values()]

    def _require(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} is not registered")
        return user
