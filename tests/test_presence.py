"""
Unit tests for PresenceRegistry.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from chatuniverse.errors import NameTaken
from chatuniverse.presence import PresenceRegistry, Session
from chatuniverse.tracker import MessageTracker


class TestTryAdd:

    def test_adds_session(self, registry):
        session = registry.try_add("c1", "Alice")
        assert session == Session(connection_id="c1", display_name="Alice")
        assert registry.get("c1") == session
        assert "c1" in registry
        assert len(registry) == 1

    def test_rejects_case_insensitive_duplicate(self, registry):
        registry.try_add("c1", "Alice")
        with pytest.raises(NameTaken) as exc_info:
            registry.try_add("c2", "aLiCe")
        assert exc_info.value.name == "aLiCe"
        assert registry.snapshot_names() == ["Alice"]
        assert "c2" not in registry
        assert registry.tracker_for("c2") is None

    def test_case_mapping_does_not_merge_distinct_names(self, registry):
        registry.try_add("c1", "Straße")
        registry.try_add("c2", "STRASSE")
        assert registry.snapshot_names() == ["Straße", "STRASSE"]
        assert registry.is_online("strasse") is True
        assert registry.is_online("STRAßE") is True
        # Ordinary letters still collide regardless of case.
        registry.try_add("c3", "alice")
        with pytest.raises(NameTaken):
            registry.try_add("c4", "ALICE")

    def test_allocates_tracker(self, registry):
        registry.try_add("c1", "Alice")
        assert isinstance(registry.tracker_for("c1"), MessageTracker)


class TestRemove:

    def test_returns_session_and_frees_name(self, registry):
        registry.try_add("c1", "Alice")
        removed = registry.remove("c1")
        assert removed.display_name == "Alice"
        assert registry.is_online("alice") is False
        assert registry.tracker_for("c1") is None
        registry.try_add("c2", "ALICE")
        assert registry.snapshot_names() == ["ALICE"]

    def test_unknown_connection(self, registry):
        assert registry.remove("missing") is None

    def test_readmitted_name_gets_fresh_tracker(self, registry):
        registry.try_add("c1", "Dave")
        registry.tracker_for("c1").record_message("hi")
        registry.remove("c1")
        registry.try_add("c2", "Dave")
        assert registry.tracker_for("c2").history == []


class TestQueries:

    def test_is_online_case_insensitive(self, registry):
        registry.try_add("c1", "Bob")
        assert registry.is_online("bob") is True
        assert registry.is_online("BOB") is True
        assert registry.is_online("Carol") is False
        assert registry.is_online("") is False
        assert registry.is_online(None) is False

    def test_snapshot_keeps_insertion_order(self, registry):
        for cid, name in (("c1", "Zed"), ("c2", "Amy"), ("c3", "Mo")):
            registry.try_add(cid, name)
        registry.remove("c2")
        assert registry.snapshot_names() == ["Zed", "Mo"]
        assert [s.connection_id for s in registry.snapshot_sessions()] == ["c1", "c3"]

    def test_snapshot_is_a_copy(self, registry):
        registry.try_add("c1", "Zed")
        names = registry.snapshot_names()
        registry.try_add("c2", "Amy")
        assert names == ["Zed"]


def test_concurrent_adds_admit_one_name_once():
    registry = PresenceRegistry()
    barrier = threading.Barrier(16)

    def attempt(i):
        barrier.wait()
        try:
            registry.try_add(f"c{i}", "Same" if i % 2 else "same")
            return True
        except NameTaken:
            return False

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1
    assert len(registry) == 1
