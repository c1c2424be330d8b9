import random

import pytest

from rental_realtime.registry import ConnectionRegistry, to_iso


@pytest.fixture
def registry(clock):
    return ConnectionRegistry(clock=clock)


def test_first_connection_marks_user_online(registry):
    assert registry.add_connection("s1", "u1", "Alice") is True
    assert registry.add_connection("s2", "u1", "Alice") is False
    assert registry.get_online_users() == ["u1"]
    assert registry.get_user_connection_count("u1") == 2


def test_user_stays_online_until_last_connection_closes(registry):
    registry.add_connection("s1", "u1", "Alice")
    registry.add_connection("s2", "u1", "Alice")

    assert registry.remove_connection("s1", "u1") is False
    assert registry.is_user_online("u1")

    assert registry.remove_connection("s2", "u1") is True
    assert not registry.is_user_online("u1")
    assert registry.get_online_users() == []


def test_online_iff_more_adds_than_removes(registry):
    rng = random.Random(7)
    open_sids = {"u1": [], "u2": []}
    counter = 0

    for _ in range(200):
        user = rng.choice(["u1", "u2"])
        if open_sids[user] and rng.random() < 0.5:
            registry.remove_connection(open_sids[user].pop(), user)
        else:
            counter += 1
            sid = f"s{counter}"
            registry.add_connection(sid, user, user)
            open_sids[user].append(sid)

        for uid, sids in open_sids.items():
            assert (uid in registry.get_online_users()) == bool(sids)


def test_duplicate_sid_is_an_overwrite(registry):
    registry.add_connection("s1", "u1", "Alice")
    registry.add_connection("s1", "u1", "Alice B.")

    assert registry.get_user_connection_count("u1") == 1
    assert registry.get_connection("s1")["display_name"] == "Alice B."


def test_duplicate_sid_for_another_user_moves_the_connection(registry):
    registry.add_connection("s1", "u1", "Alice")
    assert registry.add_connection("s1", "u2", "Bob") is True

    assert registry.get_online_users() == ["u2"]


def test_remove_unknown_sid(registry):
    assert registry.remove_connection("nope") is False


def test_presence_reports_latest_activity(registry, clock):
    registry.add_connection("s1", "u1", "Alice")
    clock.advance(30)
    registry.add_connection("s2", "u1", "Alice")
    clock.advance(30)
    registry.update_user_activity("u1")

    presence = registry.get_user_presence("u1")
    assert presence["isOnline"] is True
    assert presence["connectionCount"] == 2
    assert presence["lastActivity"] == to_iso(clock.now)


def test_presence_of_offline_user(registry):
    assert registry.get_user_presence("ghost") == {
        "userId": "ghost",
        "isOnline": False,
        "connectionCount": 0,
        "status": "offline",
    }


def test_status_applies_to_every_connection(registry):
    registry.add_connection("s1", "u1", "Alice")
    registry.add_connection("s2", "u1", "Alice")
    registry.set_user_status("u1", "away")

    assert {registry.get_connection(s)["status"] for s in ("s1", "s2")} == {"away"}
    assert registry.get_user_presence("u1")["status"] == "away"
