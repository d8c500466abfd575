"""
Infrastructure layer: collaborator interfaces and their backends.
"""
from typing import Optional

import structlog

from ..config import get_settings
from .cache import CacheKeyBuilder, InMemoryCache, RedisCache, SafeCache
from .firestore import FirestoreAggregateStore, FirestoreAnalyticsStore, FirestoreLedger
from .interfaces import AggregateStore, AnalyticsStore, BalanceHistorySource, CacheBackend, Ledger
from .memory import InMemoryAggregateStore, InMemoryAnalyticsStore, InMemoryLedger

logger = structlog.get_logger()

# Global collaborator instances
_ledger: Optional[Ledger] = None
_analytics_store: Optional[AnalyticsStore] = None
_aggregate_store: Optional[AggregateStore] = None
_cache: Optional[SafeCache] = None


def get_ledger() -> Ledger:
    """Get the global ledger for the configured storage backend."""
    global _ledger
    if _ledger is None:
        if get_settings().storage_backend == "firestore":
            _ledger = FirestoreLedger()
        else:
            _ledger = InMemoryLedger()
        logger.info("Ledger initialized", backend=type(_ledger).__name__)
    return _ledger


def get_analytics_store() -> AnalyticsStore:
    """Get the global analytics store for the configured storage backend."""
    global _analytics_store
    if _analytics_store is None:
        if get_settings().storage_backend == "firestore":
            _analytics_store = FirestoreAnalyticsStore()
        else:
            _analytics_store = InMemoryAnalyticsStore()
    return _analytics_store


def get_aggregate_store() -> AggregateStore:
    """Get the global aggregate store backing the materialized views."""
    global _aggregate_store
    if _aggregate_store is None:
        ledger = get_ledger()
        if isinstance(ledger, InMemoryLedger):
            _aggregate_store = InMemoryAggregateStore(ledger)
        else:
            _aggregate_store = FirestoreAggregateStore()
    return _aggregate_store


def get_cache() -> SafeCache:
    """Get the global best-effort cache (Redis when configured)."""
    global _cache
    if _cache is None:
        settings = get_settings()
        if settings.uses_redis:
            backend: CacheBackend = RedisCache(settings.redis_url, default_ttl=settings.cache_default_ttl)
        else:
            backend = InMemoryCache(
                max_size=settings.cache_max_entries,
                default_ttl=settings.cache_default_ttl
            )
        _cache = SafeCache(backend)
        logger.info("Cache initialized", backend=type(backend).__name__)
    return _cache


def reset_infrastructure() -> None:
    """Drop the global collaborators so the next getter call rebuilds them."""
    global _ledger, _analytics_store, _aggregate_store, _cache
    _ledger = None
    _analytics_store = None
    _aggregate_store = None
    _cache = None


__all__ = [
    "Ledger",
    "CacheBackend",
    "AnalyticsStore",
    "AggregateStore",
    "BalanceHistorySource",
    "InMemoryCache",
    "RedisCache",
    "SafeCache",
    "CacheKeyBuilder",
    "InMemoryLedger",
    "InMemoryAnalyticsStore",
    "InMemoryAggregateStore",
    "FirestoreLedger",
    "FirestoreAnalyticsStore",
    "FirestoreAggregateStore",
    "get_ledger",
    "get_analytics_store",
    "get_aggregate_store",
    "get_cache",
    "reset_infrastructure",
]
