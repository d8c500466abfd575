"""
Cache backends for the insights engine.

Values are JSON-serialized on write so every backend returns the same
plain structures (dicts, lists, strings) on read.
"""
import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as redis
import structlog

from ..utils.constants import REFRESH_LOCK_KEY_PREFIX, REFRESH_STATUS_KEY_PREFIX
from .interfaces import CacheBackend

logger = structlog.get_logger()


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str)


@dataclass
class CacheEntry:
    """Cache entry with metadata."""
    data: str
    expires_at: float
    created_at: float
    access_count: int = 0
    last_accessed: float = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if cache entry is expired."""
        return (now or time.time()) > self.expires_at

    def touch(self):
        """Update access metadata."""
        self.access_count += 1
        self.last_accessed = time.time()


class InMemoryCache(CacheBackend):
    """
    In-process cache with TTL and a size limit.

    Expired entries are dropped lazily on access and when capacity is
    needed, so the cache can be created outside a running event loop.
    """

    def __init__(self, max_size: int = 5000, default_ttl: int = 300):
        self.max_size = max_size
        self.default_ttl = default_ttl

        self._cache: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

        # Statistics
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self.misses += 1
                return None

            if entry.is_expired():
                del self._cache[key]
                self.misses += 1
                return None

            entry.touch()
            self.hits += 1
            return json.loads(entry.data)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Set value in cache."""
        async with self._lock:
            ttl = ttl_seconds or self.default_ttl
            now = time.time()

            if key not in self._cache:
                self._ensure_capacity()

            self._cache[key] = CacheEntry(
                data=_serialize(value),
                expires_at=now + ttl,
                created_at=now
            )
            return True

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self):
        """Clear all cache entries."""
        async with self._lock:
            self._cache.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        async with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

            return {
                "entries": len(self._cache),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate_percent": round(hit_rate, 2),
                "evictions": self.evictions
            }

    def _ensure_capacity(self):
        """Make room for one more entry. Caller holds the lock."""
        if len(self._cache) < self.max_size:
            return

        now = time.time()
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._cache[key]

        if len(self._cache) < self.max_size:
            return

        # Evict least recently used entry
        lru_key = min(
            self._cache.keys(),
            key=lambda k: self._cache[k].last_accessed or self._cache[k].created_at
        )
        del self._cache[lru_key]
        self.evictions += 1


class RedisCache(CacheBackend):
    """Redis-based distributed cache."""

    def __init__(self, redis_url: str = "redis://localhost:6379/0", default_ttl: int = 300):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        self.redis = redis.from_url(self.redis_url, decode_responses=True)
        await self.redis.ping()
        logger.info("Connected to Redis", url=self.redis_url)

    async def disconnect(self):
        """Disconnect from Redis."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Disconnected from Redis")

    async def _client(self) -> redis.Redis:
        if self.redis is None:
            await self.connect()
        return self.redis

    async def get(self, key: str) -> Optional[Any]:
        """Get value from Redis."""
        client = await self._client()
        data = await client.get(key)
        if data is None:
            return None
        return json.loads(data)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Set value in Redis."""
        client = await self._client()
        await client.set(key, _serialize(value), ex=ttl_seconds or self.default_ttl)
        return True

    async def delete(self, key: str) -> bool:
        """Delete key from Redis."""
        client = await self._client()
        return bool(await client.delete(key))


class SafeCache(CacheBackend):
    """
    Best-effort wrapper around a cache backend.

    Backend failures are logged and turned into a miss (get) or a no-op
    (set/delete); callers fall back to direct computation.
    """

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await self.backend.get(key)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        try:
            return await self.backend.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            return await self.backend.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed", key=key, error=str(e))
            return False


class CacheKeyBuilder:
    """Helper for building consistent cache keys."""

    @staticmethod
    def household_key(household_id: str, suffix: str) -> str:
        """Build household-specific cache key."""
        return f"household:{household_id}:{suffix}"

    @staticmethod
    def computation_key(operation: str, household_id: str, params: Dict[str, Any]) -> str:
        """Build a deterministic key for a household computation."""
        params_str = json.dumps(params, sort_keys=True, default=str)
        params_hash = hashlib.md5(params_str.encode()).hexdigest()[:16]
        return f"compute:{operation}:{household_id}:{params_hash}"

    @staticmethod
    def refresh_lock_key(view_name: str) -> str:
        return f"{REFRESH_LOCK_KEY_PREFIX}:{view_name}"

    @staticmethod
    def refresh_status_key(view_name: str) -> str:
        return f"{REFRESH_STATUS_KEY_PREFIX}:{view_name}"
