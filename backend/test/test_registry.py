"""RoomRegistry 테스트."""

import pytest

from echo_mesh.errors import RoomFullError
from echo_mesh.signaling.registry import RoomRegistry


@pytest.fixture
def registry():
    return RoomRegistry()


def test_register_assigns_unique_ids(registry):
    a = registry.register(object())
    b = registry.register(object())
    assert a.client_id != b.client_id
    assert a.room_id is None
    assert registry.client_count == 2


def test_join_returns_other_members_and_creates_room(registry):
    alice = registry.register(object())
    bob = registry.register(object())

    assert registry.join(alice, "demo1", "Alice") == []
    others = registry.join(bob, "demo1", "Bob")

    assert others == [alice]
    assert bob.room_id == "demo1"
    assert registry.get_room_count("demo1") == 2
    assert registry.get_other_peers("demo1", bob.client_id) == [alice]


def test_membership_tracks_joins_and_leaves(registry):
    sessions = [registry.register(object()) for _ in range(4)]
    for i, session in enumerate(sessions):
        registry.join(session, "demo1", f"user{i}")

    registry.leave(sessions[1])
    registry.unregister(sessions[3])

    members = {s.client_id for s in registry.get_room_peers("demo1")}
    assert members == {sessions[0].client_id, sessions[2].client_id}
    assert registry.client_count == 3


def test_empty_room_is_deleted(registry):
    alice = registry.register(object())
    registry.join(alice, "demo1", "Alice")

    assert registry.leave(alice) == "demo1"
    assert "demo1" not in registry.rooms
    assert registry.leave(alice) is None

    newcomer = registry.register(object())
    assert registry.join(newcomer, "demo1", "Carol") == []


def test_get_member_is_scoped_to_room(registry):
    alice = registry.register(object())
    bob = registry.register(object())
    registry.join(alice, "room-a", "Alice")
    registry.join(bob, "room-b", "Bob")

    assert registry.get_member("room-a", alice.client_id) is alice
    assert registry.get_member("room-a", bob.client_id) is None


def test_room_list(registry):
    alice = registry.register(object())
    registry.join(alice, "demo1", "Alice")
    assert registry.get_room_list() == [
        {"room_id": "demo1", "peer_count": 1, "peers": [{"id": alice.client_id, "name": "Alice"}]}
    ]


def test_max_room_size_rejects_without_registering():
    registry = RoomRegistry(max_room_size=1)
    alice = registry.register(object())
    bob = registry.register(object())
    registry.join(alice, "demo1", "Alice")

    with pytest.raises(RoomFullError) as exc_info:
        registry.join(bob, "demo1", "Bob")

    assert exc_info.value.limit == 1
    assert bob.room_id is None
    assert registry.get_room_count("demo1") == 1
