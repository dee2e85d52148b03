"""Unit tests for the bounded TTL cache."""

import random

import pytest

from utils.cache import TTLCache


class TestTTLExpiry:
    def test_fresh_entry_is_a_hit(self, clock):
        cache = TTLCache(ttl_seconds=300, clock=clock)
        cache.set("a", 7)
        clock.advance(299)
        assert cache.get("a") == 7

    def test_expired_entry_is_never_returned(self, clock):
        cache = TTLCache(ttl_seconds=300, clock=clock)
        cache.set("a", 7)
        clock.advance(300.5)
        assert cache.get("a") is None
        # lazily deleted on lookup
        assert cache.size() == 0

    def test_reinsert_refreshes_timestamp(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.advance(8)
        cache.set("a", 2)
        clock.advance(8)
        assert cache.get("a") == 2


class TestBoundedSize:
    def test_evicts_oldest_tenth_when_full(self, clock):
        cache = TTLCache(max_size=20, clock=clock)
        for i in range(20):
            cache.set(f"k{i}", i)

        cache.set("new", 99)

        assert len(cache) == 19
        assert cache.get("k0") is None
        assert cache.get("k1") is None
        assert cache.get("k2") == 2
        assert cache.get("new") == 99

    def test_updating_existing_key_does_not_evict(self, clock):
        cache = TTLCache(max_size=3, clock=clock)
        for key in ("a", "b", "c"):
            cache.set(key, 1)
        cache.set("b", 2)
        assert len(cache) == 3
        assert cache.get("a") == 1

    def test_tiny_cache_still_evicts_one(self, clock):
        cache = TTLCache(max_size=1, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        assert len(cache) == 1
        assert cache.get("b") == 2

    @pytest.mark.parametrize("max_size", [1, 7, 50, 128])
    def test_size_never_exceeds_max_under_random_inserts(self, clock, max_size):
        rng = random.Random(max_size)
        cache = TTLCache(max_size=max_size, clock=clock)
        for _ in range(max_size * 12):
            cache.set(f"k{rng.randrange(max_size * 4)}", rng.random())
            assert len(cache) <= max_size

    def test_rejects_non_positive_max_size(self):
        with pytest.raises(ValueError):
            TTLCache(max_size=0)


def test_invalidate_single_and_all(clock):
    cache = TTLCache(clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.invalidate()
    assert cache.size() == 0
