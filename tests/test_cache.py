"""Tests for the TTL cache."""

import pytest

from botflow.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_get_and_set(clock):
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("a", 1)
    assert cache.get("a") == 1
    assert cache.get("b", "default") == "default"


def test_entries_expire(clock):
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("a", 1)

    clock.now += 10
    assert cache.get("a") == 1

    clock.now += 0.5
    assert cache.get("a") is None
    assert len(cache) == 0


def test_oldest_write_is_evicted(clock):
    cache = TTLCache(ttl_seconds=10, max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 3)
    cache.set("c", 4)

    assert cache.get("b") is None
    assert cache.get("a") == 3
    assert cache.get("c") == 4


def test_zero_ttl_disables(clock):
    cache = TTLCache(ttl_seconds=0, clock=clock)
    cache.set("a", 1)
    assert not cache.enabled
    assert cache.get("a") is None
    assert len(cache) == 0


def test_invalidation(clock):
    cache = TTLCache(clock=clock)
    cache.set(("identity", "1"), "w1")
    cache.set(("identity", "2"), "w2")
    cache.set(("workflow", "w1"), "record")

    cache.invalidate(("identity", "1"))
    assert cache.get(("identity", "1")) is None

    assert cache.invalidate_where(lambda key: key[0] == "identity") == 1
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_stats(clock):
    cache = TTLCache(ttl_seconds=5, max_entries=3, clock=clock)
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")

    assert cache.stats() == {"entries": 1, "max_entries": 3, "ttl_seconds": 5, "hits": 1, "misses": 1}
