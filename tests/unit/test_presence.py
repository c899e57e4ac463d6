"""Unit tests for the presence registry and ownership succession."""

import pytest

from chatserver.errors import NotFoundError
from chatserver.models import DEFAULT_BUBBLE_COLOR, DEFAULT_USERNAME
from chatserver.presence import PresenceRegistry


@pytest.fixture
def registry() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.mark.unit
class TestRegister:
    def test_first_user_without_owner_becomes_owner(self, registry: PresenceRegistry) -> None:
        user = registry.register("a", "Alice", "#ff0000", owner_id=None)

        assert user.is_owner is True
        assert user.username == "Alice"
        assert user.bubble_color == "#ff0000"

    def test_owner_elect_becomes_owner(self, registry: PresenceRegistry) -> None:
        user = registry.register("a", "Alice", owner_id="a")
        assert user.is_owner is True

    def test_other_user_is_not_owner(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice", owner_id=None)
        user = registry.register("b", "Bob", owner_id="a")

        assert user.is_owner is False

    def test_username_is_sanitized_with_default(self, registry: PresenceRegistry) -> None:
        assert registry.register("a", "  <Al>ice ").username == "Alice"
        assert registry.register("b", "<>").username == DEFAULT_USERNAME
        assert registry.register("c", None).username == DEFAULT_USERNAME

    def test_missing_color_gets_default(self, registry: PresenceRegistry) -> None:
        assert registry.register("a", "Alice", 123).bubble_color == DEFAULT_BUBBLE_COLOR

    def test_reregister_keeps_position_and_join_time(self, registry: PresenceRegistry) -> None:
        first = registry.register("a", "Alice", owner_id=None)
        registry.register("b", "Bob", owner_id="a")

        again = registry.register("a", "Alicia", owner_id="a")

        assert again.join_time == first.join_time
        assert again.is_owner is True
        assert [u.username for u in registry.list()] == ["Alicia", "Bob"]

    def test_snapshots_are_copies(self, registry: PresenceRegistry) -> None:
        user = registry.register("a", "Alice")
        user.username = "Mallory"

        assert registry.get("a").username == "Alice"


@pytest.mark.unit
class TestMutations:
    def test_rename(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice")
        assert registry.rename("a", " <Bob> ").username == "Bob"

    def test_rename_unknown(self, registry: PresenceRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.rename("ghost", "Bob")

    def test_recolor(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice")
        assert registry.recolor("a", "not-even-a-color").bubble_color == "not-even-a-color"

    def test_recolor_unknown(self, registry: PresenceRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.recolor("ghost", "#000")


@pytest.mark.unit
class TestSuccession:
    def test_owner_leaving_promotes_earliest(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice", owner_id=None)
        registry.register("b", "Bob", owner_id="a")
        registry.register("c", "Carol", owner_id="a")

        removed, successor = registry.unregister("a")

        assert removed.id == "a"
        assert successor is not None
        assert successor.id == "b"
        assert [u.id for u in registry.list() if u.is_owner] == ["b"]

    def test_non_owner_leaving_keeps_owner(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice", owner_id=None)
        registry.register("b", "Bob", owner_id="a")

        _, successor = registry.unregister("b")

        assert successor is None
        assert registry.get("a").is_owner is True

    def test_last_owner_leaving_has_no_successor(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice", owner_id=None)

        _, successor = registry.unregister("a")

        assert successor is None
        assert len(registry) == 0

    def test_unregister_unknown(self, registry: PresenceRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.unregister("ghost")

    def test_promote_earliest_clears_other_flags(self, registry: PresenceRegistry) -> None:
        registry.register("a", "Alice", owner_id="z")
        registry.register("b", "Bob", owner_id=None)

        promoted = registry.promote_earliest()

        assert promoted.id == "a"
        assert [u.is_owner for u in registry.list()] == [True, False]

    def test_promote_earliest_empty(self, registry: PresenceRegistry) -> None:
        assert registry.promote_earliest() is None
