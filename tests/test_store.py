"""
Unit tests for the cache store: TTL expiry, eviction, lifecycle hooks.
"""
import pytest

from swrcache.cache import CacheEntry, CacheOptions, CacheStore

from conftest import FakeClock


async def _producer():
    return "value"


class RecordingLifecycle:
    """Captures store lifecycle events."""

    def __init__(self):
        self.events = []

    def entry_written(self, key, entry):
        self.events.append(("written", key))

    def entry_removed(self, key):
        self.events.append(("removed", key))

    def store_cleared(self):
        self.events.append(("cleared", None))


def make_entry(timestamp, ttl=60.0, data="value", **options):
    return CacheEntry(
        data=data,
        timestamp=timestamp,
        producer=_producer,
        options=CacheOptions(ttl=ttl, **options),
    )


@pytest.fixture
def clock():
    return FakeClock(start=0.0)


@pytest.fixture
def lifecycle():
    return RecordingLifecycle()


@pytest.fixture
def store(clock, lifecycle):
    return CacheStore(clock, lifecycle=lifecycle)


class TestExpiry:
    """TTL checks."""

    def test_entry_is_fresh_within_ttl(self, store, clock):
        entry = make_entry(timestamp=0.0, ttl=5.0)
        clock.advance(5.0)
        assert store.is_expired(entry) is False

    def test_entry_expires_after_ttl(self, store, clock):
        entry = make_entry(timestamp=0.0, ttl=5.0)
        clock.advance(6.0)
        assert store.is_expired(entry) is True

    def test_zero_ttl_never_expires(self, store, clock):
        entry = make_entry(timestamp=0.0, ttl=0)
        clock.advance(10 ** 9)
        assert store.is_expired(entry) is False


class TestBasicOperations:
    """get / set / delete / has / snapshot."""

    def test_set_and_get(self, store):
        entry = make_entry(timestamp=0.0)
        store.set("a", entry)
        assert store.get("a") is entry
        assert store.has("a")
        assert "a" in store
        assert len(store) == 1

    def test_get_missing_returns_none(self, store):
        assert store.get("missing") is None
        assert store.has("missing") is False

    def test_delete(self, store):
        store.set("a", make_entry(timestamp=0.0))
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a") is None

    def test_snapshot_is_a_copy(self, store):
        store.set("a", make_entry(timestamp=0.0))
        snapshot = store.snapshot()
        snapshot.pop("a")
        assert store.has("a")

    def test_update_changes_fields_in_place(self, store, lifecycle):
        entry = make_entry(timestamp=0.0)
        store.set("a", entry)
        error = RuntimeError("boom")

        updated = store.update("a", error=error, timestamp=3.0)

        assert updated is entry
        assert entry.error is error
        assert entry.timestamp == 3.0
        assert lifecycle.events == [("written", "a")]

    def test_update_missing_key_returns_none(self, store):
        assert store.update("missing", error=None) is None

    def test_update_unknown_field_raises(self, store):
        store.set("a", make_entry(timestamp=0.0))
        with pytest.raises(AttributeError):
            store.update("a", nonsense=1)

    def test_info(self, store):
        store.set("a", make_entry(timestamp=0.0))
        store.set("b", make_entry(timestamp=1.0))
        assert store.info() == {"size": 2, "keys": ["a", "b"]}


class TestEviction:
    """Oldest-write eviction and the size bound."""

    def test_evict_oldest_removes_minimum_timestamp(self, store):
        store.set("new", make_entry(timestamp=5.0))
        store.set("old", make_entry(timestamp=1.0))
        store.set("mid", make_entry(timestamp=3.0))

        assert store.evict_oldest() == "old"
        assert store.keys() == ["new", "mid"]

    def test_evict_oldest_tie_goes_to_first_written(self, store):
        store.set("first", make_entry(timestamp=1.0))
        store.set("second", make_entry(timestamp=1.0))

        assert store.evict_oldest() == "first"

    def test_evict_oldest_on_empty_store(self, store, lifecycle):
        assert store.evict_oldest() is None
        assert lifecycle.events == []

    def test_rewrite_moves_key_to_end(self, store):
        store.set("a", make_entry(timestamp=1.0))
        store.set("b", make_entry(timestamp=1.0))
        store.set("a", make_entry(timestamp=1.0))

        assert store.keys() == ["b", "a"]
        assert store.evict_oldest() == "b"

    def test_update_with_timestamp_moves_key_to_end(self, store, lifecycle):
        store.set("a", make_entry(timestamp=1.0))
        store.set("b", make_entry(timestamp=1.0))

        store.update("a", data="a2", timestamp=1.0)

        assert store.keys() == ["b", "a"]
        assert store.evict_oldest() == "b"
        assert lifecycle.events == [("written", "a"), ("written", "b")]

    def test_update_without_timestamp_keeps_position(self, store):
        store.set("a", make_entry(timestamp=1.0))
        store.set("b", make_entry(timestamp=1.0))

        store.update("a", error=RuntimeError("x"))

        assert store.keys() == ["a", "b"]

    def test_ensure_size_keeps_most_recent_writes(self, store, clock):
        for index, key in enumerate("abcdef"):
            store.set(key, make_entry(timestamp=float(index)))
            store.ensure_size(3)
            assert len(store) <= 3

        assert store.keys() == ["d", "e", "f"]

    def test_ensure_size_returns_evicted_count(self, store):
        for index, key in enumerate("abcd"):
            store.set(key, make_entry(timestamp=float(index)))
        assert store.ensure_size(1) == 3
        assert store.keys() == ["d"]

    def test_ensure_size_noop_under_bound(self, store):
        store.set("a", make_entry(timestamp=0.0))
        assert store.ensure_size(10) == 0


class TestLifecycle:
    """Store events drive polling."""

    def test_set_reports_write(self, store, lifecycle):
        store.set("a", make_entry(timestamp=0.0))
        assert lifecycle.events == [("written", "a")]

    def test_eviction_reports_removal(self, store, lifecycle):
        store.set("a", make_entry(timestamp=0.0))
        store.set("b", make_entry(timestamp=1.0))
        store.ensure_size(1)
        assert ("removed", "a") in lifecycle.events

    def test_clear_single_key(self, store, lifecycle):
        store.set("a", make_entry(timestamp=0.0))
        store.set("b", make_entry(timestamp=0.0))

        assert store.clear("a") == 1
        assert store.keys() == ["b"]
        assert lifecycle.events[-1] == ("removed", "a")

    def test_clear_missing_key_still_stops_polling(self, store, lifecycle):
        assert store.clear("ghost") == 0
        assert lifecycle.events == [("removed", "ghost")]

    def test_clear_all(self, store, lifecycle):
        store.set("a", make_entry(timestamp=0.0))
        store.set("b", make_entry(timestamp=0.0))

        assert store.clear() == 2
        assert len(store) == 0
        assert lifecycle.events[-1] == ("cleared", None)
