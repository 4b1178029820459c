"""
Tests for the shared TTL cache.

============================================================
PURPOSE
============================================================
Verify CacheStore expiry, eviction and bookkeeping.

TEST PRINCIPLES:
- Time only moves through MockClock
- Expiry is inclusive at exactly the TTL
- Overwrites never evict other entries

============================================================
"""

import asyncio

import pytest

from core.clock import MockClock
from token_providers.cache import CacheStore


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Deterministic clock."""
    return MockClock()


@pytest.fixture
def cache(clock):
    """Small cache on the mock clock."""
    return CacheStore(default_ttl=60, max_size=3, clock=clock, name="test")


# ============================================================
# TTL
# ============================================================

class TestExpiry:
    """Entries live for exactly their TTL."""

    def test_get_returns_value_before_ttl(self, cache, clock):
        cache.set("a", {"x": 1})
        clock.advance(59.9)
        assert cache.get("a") == {"x": 1}

    def test_entry_expires_at_ttl(self, cache, clock):
        cache.set("a", 1)
        clock.advance(60)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_explicit_ttl_overrides_default(self, cache, clock):
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)
        clock.advance(10)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_non_positive_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.set("a", 1, ttl=0)

    def test_has_does_not_count_hits(self, cache):
        cache.set("a", 1)
        assert cache.has("a")
        assert not cache.has("missing")
        stats = cache.get_stats()
        assert stats["hits"] == 0
        assert stats["misses"] == 0

    def test_cleanup_removes_only_expired(self, cache, clock):
        cache.set("old", 1, ttl=10)
        cache.set("new", 2, ttl=100)
        clock.advance(20)
        assert cache.cleanup() == 1
        assert cache.get("new") == 2
        assert cache.get_stats()["expirations"] == 1


# ============================================================
# CAPACITY
# ============================================================

class TestEviction:
    """The oldest entry goes first when full."""

    def test_oldest_entry_evicted(self, cache):
        for key in ("a", "b", "c", "d"):
            cache.set(key, key)
        assert cache.get("a") is None
        assert cache.get("d") == "d"
        assert cache.get_stats()["evictions"] == 1

    def test_overwrite_does_not_evict(self, cache):
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.set("b", "B")
        assert len(cache) == 3
        assert cache.get("a") == "a"
        assert cache.get("b") == "B"

    def test_overwrite_resets_ttl(self, cache, clock):
        cache.set("a", 1)
        clock.advance(50)
        cache.set("a", 2)
        clock.advance(50)
        assert cache.get("a") == 2


# ============================================================
# DELETION + STATS
# ============================================================

class TestDeletion:
    """Delete by key and by prefix."""

    def test_delete(self, cache):
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False

    def test_delete_prefix(self):
        cache = CacheStore(clock=MockClock())
        cache.set("pipeline:analysis:A", 1)
        cache.set("pipeline:analysis:B", 2)
        cache.set("provider:rugcheck:A", 3)
        assert cache.delete_prefix("pipeline:analysis:") == 2
        assert cache.get("provider:rugcheck:A") == 3

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestStats:
    """Hit rate bookkeeping."""

    def test_hit_rate(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")
        cache.get("c")
        stats = cache.get_stats()
        assert stats["name"] == "test"
        assert stats["hits"] == 2
        assert stats["misses"] == 2
        assert stats["hit_rate_percent"] == 50.0
        assert stats["entries"] == 1
        assert stats["max_size"] == 3

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            CacheStore(default_ttl=0)
        with pytest.raises(ValueError):
            CacheStore(max_size=0)


class TestSweep:
    """Background cleanup task."""

    @pytest.mark.asyncio
    async def test_sweep_expires_untouched_entries(self, cache, clock):
        cache.set("a", 1, ttl=5)
        cache.start_cleanup(interval_seconds=10)

        for _ in range(3):
            await asyncio.sleep(0)
        await cache.stop_cleanup()

        assert clock.sleeps[0] == 10
        assert cache.get_stats()["expirations"] == 1
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, cache):
        await cache.stop_cleanup()
