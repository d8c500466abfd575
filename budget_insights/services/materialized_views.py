"""
Materialized view refresh coordination.

Each view moves through REFRESHING -> COMPLETED | FAILED. A refresh holds a
lease in the cache (key refresh_lock:<view>, owner token, TTL) so that other
processes skip the view while it is being recomputed. Inside this process,
check-and-acquire is serialized per view, so concurrent callers see the same
in-flight status and the recomputation runs once. Across processes the lease
is advisory: a cache outage can allow a duplicate refresh.
"""

import asyncio
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import structlog

from ..config import Settings, get_settings
from ..infrastructure.cache import CacheKeyBuilder, SafeCache
from ..infrastructure.interfaces import AggregateStore, AnalyticsStore, CacheBackend
from ..models.views import EPOCH, MaterializedViewStatus, RefreshLease
from ..utils.constants import NEXT_REFRESH_SECONDS, VIEW_NAMES, RefreshState
from ..utils.exceptions import AppException, data_source_guard
from ..utils.periods import Clock
from ..utils.validators import ensure_valid, validate_view_name

logger = structlog.get_logger()


class MaterializedViewService:
    """Coordinates refreshes of the precomputed aggregate views."""

    def __init__(
        self,
        cache: CacheBackend,
        store: AnalyticsStore,
        aggregate_store: AggregateStore,
        view_names: Sequence[str] = VIEW_NAMES,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        settings = settings or get_settings()
        self.cache = cache if isinstance(cache, SafeCache) else SafeCache(cache)
        self.store = store
        self.aggregate_store = aggregate_store
        self.view_names = tuple(view_names)
        self.lock_ttl = settings.view_refresh_lock_ttl
        self.status_ttl = settings.view_status_ttl
        self._clock = clock or datetime.utcnow

        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # view_name -> owner token of the refresh running in this process
        self._active: Dict[str, str] = {}

    async def refresh(self, view_name: str, force: bool = False) -> MaterializedViewStatus:
        """
        Refresh one view.

        Without force, a view whose lease is live is left alone and its
        in-flight status is returned. Failures are recorded as FAILED and
        re-raised; the lease is released either way.
        """
        ensure_valid(validate_view_name, view_name, self.view_names)

        async with self._locks[view_name]:
            now = self._clock()

            if not force:
                in_flight = await self._in_flight_status(view_name, now)
                if in_flight is not None:
                    logger.info("View refresh already in progress", view_name=view_name)
                    return in_flight

            previous = await self._read_status(view_name)
            lease = await self._acquire_lease(view_name, now)
            refreshing = MaterializedViewStatus(
                view_name=view_name,
                last_refreshed=previous.last_refreshed if previous else EPOCH,
                next_refresh=now + timedelta(seconds=NEXT_REFRESH_SECONDS),
                status=RefreshState.REFRESHING,
            )

            try:
                await self._write_status(refreshing)
            except Exception:
                await self._release_lease(lease)
                raise

        return await self._run_refresh(lease, refreshing)

    async def refresh_all(self, force: bool = False) -> List[MaterializedViewStatus]:
        """Refresh every view; one view failing never affects the others."""
        results = await asyncio.gather(
            *(self.refresh(view_name, force) for view_name in self.view_names),
            return_exceptions=True
        )

        now = self._clock()
        statuses = []
        for view_name, result in zip(self.view_names, results):
            if isinstance(result, Exception):
                statuses.append(await self._failure_status(view_name, result, now))
            else:
                statuses.append(result)

        failed = sum(1 for s in statuses if s.status == RefreshState.FAILED)
        logger.info(
            "Materialized view refresh completed",
            views=len(statuses),
            failed=failed,
            forced=force
        )
        return statuses

    async def get_status(self, view_name: str) -> MaterializedViewStatus:
        """Last known status; a view never refreshed reports COMPLETED at the epoch."""
        ensure_valid(validate_view_name, view_name, self.view_names)

        status = await self._read_status(view_name)
        return status or MaterializedViewStatus.never_refreshed(view_name)

    async def get_all_statuses(self) -> List[MaterializedViewStatus]:
        return list(await asyncio.gather(*(self.get_status(name) for name in self.view_names)))

    async def _run_refresh(self, lease: RefreshLease, refreshing: MaterializedViewStatus) -> MaterializedViewStatus:
        view_name = lease.view_name
        started = time.time()
        logger.info("Refreshing materialized view", view_name=view_name, owner=lease.owner)

        try:
            async with data_source_guard("aggregate_store", "refresh_view", view_name=view_name):
                await self.aggregate_store.refresh_view(view_name)
        except Exception as e:
            failed = refreshing.model_copy(update={
                "status": RefreshState.FAILED,
                "duration_ms": int((time.time() - started) * 1000),
                "error": str(e.__cause__ or e),
            })
            try:
                await self._write_status(failed)
            except AppException as status_error:
                logger.error(
                    "Failed to record view refresh failure",
                    view_name=view_name,
                    error=str(status_error)
                )
            logger.error("Materialized view refresh failed", view_name=view_name, error=str(e))
            raise
        else:
            completed = refreshing.model_copy(update={
                "status": RefreshState.COMPLETED,
                "last_refreshed": self._clock(),
                "duration_ms": int((time.time() - started) * 1000),
                "error": None,
            })
            await self._write_status(completed)
            logger.info(
                "Materialized view refreshed",
                view_name=view_name,
                duration_ms=completed.duration_ms
            )
            return completed
        finally:
            await self._release_lease(lease)

    async def _failure_status(
        self,
        view_name: str,
        error: Exception,
        now: datetime
    ) -> MaterializedViewStatus:
        """The FAILED status recorded by the refresh, or one built from the error."""
        try:
            saved = await self._read_status(view_name)
        except AppException:
            saved = None

        if saved is not None and saved.status == RefreshState.FAILED:
            return saved

        return MaterializedViewStatus(
            view_name=view_name,
            last_refreshed=saved.last_refreshed if saved else EPOCH,
            next_refresh=now + timedelta(seconds=NEXT_REFRESH_SECONDS),
            status=RefreshState.FAILED,
            error=str(error.__cause__ or error),
        )

    async def _in_flight_status(self, view_name: str, now: datetime) -> Optional[MaterializedViewStatus]:
        lease = await self._get_lease(view_name)
        live = view_name in self._active or (lease is not None and lease.is_live(now))
        if not live:
            return None

        status = await self._read_status(view_name)
        if status is not None and status.status == RefreshState.REFRESHING:
            return status

        return MaterializedViewStatus(
            view_name=view_name,
            last_refreshed=status.last_refreshed if status else EPOCH,
            next_refresh=now + timedelta(seconds=NEXT_REFRESH_SECONDS),
            status=RefreshState.REFRESHING,
        )

    async def _get_lease(self, view_name: str) -> Optional[RefreshLease]:
        cached = await self.cache.get(CacheKeyBuilder.refresh_lock_key(view_name))
        if cached is None:
            return None
        return RefreshLease.model_validate(cached)

    async def _acquire_lease(self, view_name: str, now: datetime) -> RefreshLease:
        lease = RefreshLease(
            view_name=view_name,
            acquired_at=now,
            expires_at=now + timedelta(seconds=self.lock_ttl),
        )
        await self.cache.set(
            CacheKeyBuilder.refresh_lock_key(view_name),
            lease.model_dump(mode="json"),
            self.lock_ttl
        )
        self._active[view_name] = lease.owner
        return lease

    async def _release_lease(self, lease: RefreshLease) -> None:
        """Release the lease only while this refresher still owns it."""
        if self._active.get(lease.view_name) == lease.owner:
            del self._active[lease.view_name]

        current = await self._get_lease(lease.view_name)
        if current is None:
            return

        if current.owner != lease.owner:
            logger.warning(
                "Refresh lease owned by another refresher, not releasing",
                view_name=lease.view_name,
                owner=lease.owner,
                current_owner=current.owner
            )
            return

        await self.cache.delete(CacheKeyBuilder.refresh_lock_key(lease.view_name))

    async def _read_status(self, view_name: str) -> Optional[MaterializedViewStatus]:
        cached = await self.cache.get(CacheKeyBuilder.refresh_status_key(view_name))
        if cached is not None:
            return MaterializedViewStatus.model_validate(cached)

        async with data_source_guard("analytics_store", "get_view_status", view_name=view_name):
            status = await self.store.get_view_status(view_name)

        if status is not None:
            await self.cache.set(
                CacheKeyBuilder.refresh_status_key(view_name),
                status.model_dump(mode="json"),
                self.status_ttl
            )
        return status

    async def _write_status(self, status: MaterializedViewStatus) -> None:
        await self.cache.set(
            CacheKeyBuilder.refresh_status_key(status.view_name),
            status.model_dump(mode="json"),
            self.status_ttl
        )

        async with data_source_guard("analytics_store", "upsert_view_status", view_name=status.view_name):
            await self.store.upsert_view_status(status.view_name, status)
