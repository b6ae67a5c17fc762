"""Tests for the session and room registries."""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from chatproto.errors import DuplicateUsernameError
from chatproto.registry import RoomRegistry, SessionRegistry


@pytest.fixture
def sessions():
    return SessionRegistry()


@pytest.fixture
def rooms():
    return RoomRegistry()


def test_create_get_remove(sessions):
    alice = sessions.create("alice")
    assert sessions.get(alice.id) is alice
    assert alice.current_room is None
    assert len(sessions) == 1

    assert sessions.remove(alice.id) is alice
    assert sessions.get(alice.id) is None
    assert sessions.remove(alice.id) is None
    assert len(sessions) == 0


def test_session_ids_are_unique(sessions):
    ids = {sessions.create(f"user{i}").id for i in range(50)}
    assert len(ids) == 50


def test_duplicate_username_rejected_without_mutation(sessions):
    first = sessions.create("alice")
    with pytest.raises(DuplicateUsernameError) as excinfo:
        sessions.create("alice")
    assert excinfo.value.username == "alice"
    assert sessions.snapshot() == [first]


def test_username_match_is_case_sensitive(sessions):
    sessions.create("alice")
    assert sessions.create("Alice").username == "Alice"


def test_name_is_free_again_after_remove(sessions):
    first = sessions.create("alice")
    sessions.remove(first.id)
    assert sessions.create("alice").id != first.id


def test_none_lookups(sessions):
    assert sessions.get(None) is None
    assert sessions.remove(None) is None


def test_concurrent_logins_same_name_only_one_wins(sessions):
    """Threads racing for one username: exactly one session is created."""
    barrier = threading.Barrier(16)

    def attempt(_):
        barrier.wait()
        try:
            return sessions.create("alice")
        except DuplicateUsernameError:
            return None

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(attempt, range(16)))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert len(sessions) == 1


def test_find_by_username_and_set_room(sessions):
    bob = sessions.create("bob")
    assert sessions.find_by_username("bob") is bob
    assert sessions.find_by_username("bobby") is None

    sessions.set_room(bob.id, "general")
    assert bob.current_room == "general"
    sessions.set_room("missing", "general")  # no-op


def test_snapshot_keeps_login_order(sessions):
    names = ["carol", "alice", "bob"]
    for name in names:
        sessions.create(name)
    assert [s.username for s in sessions.snapshot()] == names


def test_get_or_create_returns_same_room(rooms):
    room = rooms.get_or_create("general")
    assert rooms.get_or_create("general") is room
    assert rooms.get("general") is room
    assert rooms.get("other") is None
    assert rooms.get(None) is None


def test_concurrent_first_join_creates_one_room(rooms):
    barrier = threading.Barrier(8)

    def attempt(_):
        barrier.wait()
        return rooms.get_or_create("lobby")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(8)))

    assert len({id(r) for r in results}) == 1
    assert rooms.get("lobby") is results[0]


def test_membership_is_idempotent(sessions, rooms):
    alice = sessions.create("alice")
    room = rooms.get_or_create("general")

    rooms.add_member(room, alice)
    rooms.add_member(room, alice)
    assert rooms.members(room) == [alice]

    rooms.remove_member(room, alice)
    rooms.remove_member(room, alice)
    assert rooms.members(room) == []
    # empty rooms stick around
    assert rooms.get("general") is room


def test_members_is_a_snapshot(sessions, rooms):
    alice, bob = sessions.create("alice"), sessions.create("bob")
    room = rooms.get_or_create("general")
    rooms.add_member(room, alice)

    snapshot = rooms.members(room)
    rooms.add_member(room, bob)
    rooms.remove_member(room, alice)

    assert snapshot == [alice]
    assert rooms.members(room) == [bob]
