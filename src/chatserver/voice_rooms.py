"""Voice room membership."""

import logging

logger = logging.getLogger(__name__)


class VoiceRoomRegistry:
    """Membership sets per voice room id.

    Rooms are created on first join and removed as soon as they are empty.
    Members are kept in join order so snapshots are deterministic.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, None]] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def members(self, room_id: str) -> list[str]:
        """Snapshot of a room's members (empty if the room does not exist)."""
        return list(self._rooms.get(room_id, {}))

    def rooms(self) -> dict[str, list[str]]:
        """Snapshot of every room and its members."""
        return {room_id: list(members) for room_id, members in self._rooms.items()}

    def join(self, room_id: str, user_id: str) -> list[str]:
        """Add a member, creating the room if needed.

        Returns:
            Current members, including the joiner
        """
        room = self._rooms.setdefault(room_id, {})
        room[user_id] = None
        logger.debug("Voice room joined", extra={"room_id": room_id, "user_id": user_id})
        return list(room)

    def leave(self, room_id: str, user_id: str) -> bool:
        """Remove a member, deleting the room once empty.

        Returns:
            True if the user was a member and has been removed
        """
        room = self._rooms.get(room_id)
        if room is None or user_id not in room:
            return False

        del room[user_id]
        if not room:
            del self._rooms[room_id]
            logger.debug("Voice room closed", extra={"room_id": room_id})
        return True

    def purge_user(self, user_id: str) -> list[str]:
        """Remove a user from every room they occupy.

        Returns:
            Ids of the rooms the user left
        """
        affected = [room_id for room_id, room in self._rooms.items() if user_id in room]
        for room_id in affected:
            self.leave(room_id, user_id)
        return affected
