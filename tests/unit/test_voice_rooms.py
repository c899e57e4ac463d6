"""Unit tests for voice room membership."""

import pytest

from chatserver.voice_rooms import VoiceRoomRegistry


@pytest.mark.unit
def test_join_creates_room_and_returns_members() -> None:
    rooms = VoiceRoomRegistry()

    assert rooms.join("r1", "a") == ["a"]
    assert rooms.join("r1", "b") == ["a", "b"]
    assert "r1" in rooms


@pytest.mark.unit
def test_join_twice_is_idempotent() -> None:
    rooms = VoiceRoomRegistry()
    rooms.join("r1", "a")

    assert rooms.join("r1", "a") == ["a"]


@pytest.mark.unit
def test_leave_deletes_empty_room() -> None:
    rooms = VoiceRoomRegistry()
    rooms.join("r1", "a")
    rooms.join("r1", "b")

    assert rooms.leave("r1", "a") is True
    assert rooms.members("r1") == ["b"]
    assert rooms.leave("r1", "b") is True
    assert "r1" not in rooms
    assert len(rooms) == 0


@pytest.mark.unit
def test_leave_when_not_member() -> None:
    rooms = VoiceRoomRegistry()
    rooms.join("r1", "a")

    assert rooms.leave("r1", "b") is False
    assert rooms.leave("nope", "a") is False
    assert rooms.members("r1") == ["a"]


@pytest.mark.unit
def test_purge_user_leaves_every_room() -> None:
    rooms = VoiceRoomRegistry()
    rooms.join("r1", "a")
    rooms.join("r2", "a")
    rooms.join("r2", "b")
    rooms.join("r3", "b")

    affected = rooms.purge_user("a")

    assert affected == ["r1", "r2"]
    assert rooms.rooms() == {"r2": ["b"], "r3": ["b"]}


@pytest.mark.unit
def test_members_snapshot_is_a_copy() -> None:
    rooms = VoiceRoomRegistry()
    members = rooms.join("r1", "a")
    members.append("intruder")

    assert rooms.members("r1") == ["a"]
