"""
Unit tests for cache backends.
"""
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from budget_insights.infrastructure.cache import (
    CacheEntry,
    CacheKeyBuilder,
    InMemoryCache,
    RedisCache,
    SafeCache,
)


class TestCacheEntry:
    """Test cases for CacheEntry."""

    @pytest.mark.unit
    def test_is_expired(self):
        now = time.time()

        assert not CacheEntry(data="1", expires_at=now + 300, created_at=now).is_expired()
        assert CacheEntry(data="1", expires_at=now - 300, created_at=now - 400).is_expired()

    @pytest.mark.unit
    def test_touch(self):
        entry = CacheEntry(data="1", expires_at=time.time() + 300, created_at=time.time())

        entry.touch()
        entry.touch()

        assert entry.access_count == 2
        assert entry.last_accessed is not None


class TestInMemoryCache:
    """Test cases for InMemoryCache."""

    @pytest.fixture
    def cache(self):
        return InMemoryCache(max_size=2, default_ttl=300)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_and_get_round_trips_json(self, cache):
        assert await cache.set("key", {"total": 1250, "tags": ["a"]}) is True

        assert await cache.get("key") == {"total": 1250, "tags": ["a"]}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_key(self, cache):
        assert await cache.get("missing") is None
        assert cache.misses == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, cache):
        await cache.set("key", "value", ttl_seconds=60)
        cache._cache["key"].expires_at = time.time() - 1

        assert await cache.get("key") is None
        assert "key" not in cache._cache

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_least_recently_used_entry_is_evicted(self, cache):
        await cache.set("old", 1)
        await cache.set("recent", 2)
        cache._cache["old"].created_at -= 100
        cache._cache["recent"].created_at -= 50

        await cache.set("new", 3)

        assert await cache.get("old") is None
        assert await cache.get("recent") == 2
        assert await cache.get("new") == 3
        assert cache.evictions == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_entries_are_dropped_before_eviction(self, cache):
        await cache.set("stale", 1)
        await cache.set("fresh", 2)
        cache._cache["stale"].expires_at = time.time() - 1

        await cache.set("new", 3)

        assert cache.evictions == 0
        assert await cache.get("fresh") == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete(self, cache):
        await cache.set("key", "value")

        assert await cache.delete("key") is True
        assert await cache.delete("key") is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.set("key", "value")
        await cache.get("key")
        await cache.get("missing")

        stats = await cache.get_stats()

        assert stats["entries"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.set("key", "value")
        await cache.clear()

        assert await cache.get("key") is None


class TestRedisCache:
    """Test cases for RedisCache with a mocked client."""

    @pytest.fixture
    def mock_redis(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.get = AsyncMock(return_value='{"total": 1250}')
        client.set = AsyncMock(return_value=True)
        client.delete = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connects_lazily(self, mock_redis):
        cache = RedisCache("redis://cache:6379/0", default_ttl=120)

        with patch("budget_insights.infrastructure.cache.redis.from_url", return_value=mock_redis) as from_url:
            value = await cache.get("key")

        from_url.assert_called_once_with("redis://cache:6379/0", decode_responses=True)
        mock_redis.ping.assert_awaited_once()
        assert value == {"total": 1250}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_uses_default_ttl(self, mock_redis):
        cache = RedisCache(default_ttl=120)
        cache.redis = mock_redis

        await cache.set("key", {"a": 1})

        mock_redis.set.assert_awaited_once_with("key", '{"a": 1}', ex=120)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_missing_and_delete(self, mock_redis):
        mock_redis.get.return_value = None
        cache = RedisCache()
        cache.redis = mock_redis

        assert await cache.get("key") is None
        assert await cache.delete("key") is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disconnect(self, mock_redis):
        cache = RedisCache()
        cache.redis = mock_redis

        await cache.disconnect()

        mock_redis.aclose.assert_awaited_once()
        assert cache.redis is None


class TestSafeCache:
    """Test the best-effort wrapper."""

    @pytest.fixture
    def broken_backend(self):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.set = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.delete = AsyncMock(side_effect=ConnectionError("redis down"))
        return backend

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failures_become_misses(self, broken_backend):
        cache = SafeCache(broken_backend)

        assert await cache.get("key") is None
        assert await cache.set("key", 1) is False
        assert await cache.delete("key") is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delegates_to_backend(self, memory_cache):
        cache = SafeCache(memory_cache)

        await cache.set("key", [1, 2])

        assert await cache.get("key") == [1, 2]
        assert await memory_cache.get("key") == [1, 2]


class TestCacheKeyBuilder:
    """Test cases for CacheKeyBuilder."""

    @pytest.mark.unit
    def test_computation_key_is_order_independent(self):
        first = CacheKeyBuilder.computation_key("trend_analysis", "hh_1", {"a": 1, "b": [2, 3]})
        second = CacheKeyBuilder.computation_key("trend_analysis", "hh_1", {"b": [2, 3], "a": 1})

        assert first == second
        assert first.startswith("compute:trend_analysis:hh_1:")

    @pytest.mark.unit
    def test_computation_key_changes_with_params(self):
        first = CacheKeyBuilder.computation_key("trend_analysis", "hh_1", {"a": 1})
        second = CacheKeyBuilder.computation_key("trend_analysis", "hh_1", {"a": 2})

        assert first != second

    @pytest.mark.unit
    def test_view_keys(self):
        assert CacheKeyBuilder.household_key("hh_1", "patterns") == "household:hh_1:patterns"
        assert CacheKeyBuilder.refresh_lock_key("cashflow_analysis") == "refresh_lock:cashflow_analysis"
        assert CacheKeyBuilder.refresh_status_key("cashflow_analysis") == "refresh_status:cashflow_analysis"
