"""
Unit tests for materialized view refresh coordination.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from budget_insights.infrastructure.cache import CacheKeyBuilder
from budget_insights.models.views import EPOCH, MaterializedViewStatus, RefreshLease
from budget_insights.services.materialized_views import MaterializedViewService
from budget_insights.utils.constants import VIEW_NAMES, RefreshState
from budget_insights.utils.exceptions import DataSourceError, ValidationError

VIEW = "daily_spending_summary"


@pytest.fixture
def mock_aggregate_store():
    store = MagicMock()
    store.refresh_view = AsyncMock(return_value=None)
    return store


@pytest.fixture
def view_service(memory_cache, analytics_store, mock_aggregate_store, clock, test_settings):
    return MaterializedViewService(
        memory_cache, analytics_store, mock_aggregate_store, clock=clock, settings=test_settings
    )


async def _store_lease(cache, lease: RefreshLease):
    await cache.set(CacheKeyBuilder.refresh_lock_key(lease.view_name), lease.model_dump(mode="json"), 1800)


@pytest.mark.unit
class TestRefresh:
    """Test single view refresh."""

    @pytest.mark.asyncio
    async def test_refresh_completes(self, view_service, mock_aggregate_store, analytics_store, memory_cache, now):
        status = await view_service.refresh(VIEW)

        assert status.status == RefreshState.COMPLETED
        assert status.last_refreshed == now
        assert status.next_refresh == now + timedelta(hours=1)
        assert status.duration_ms >= 0
        assert status.error is None
        mock_aggregate_store.refresh_view.assert_awaited_once_with(VIEW)

        assert await analytics_store.get_view_status(VIEW) == status
        assert await memory_cache.get(CacheKeyBuilder.refresh_lock_key(VIEW)) is None

    @pytest.mark.asyncio
    async def test_unknown_view_raises_validation_error(self, view_service, mock_aggregate_store):
        with pytest.raises(ValidationError):
            await view_service.refresh("not_a_view")

        mock_aggregate_store.refresh_view.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_run_once(self, view_service, mock_aggregate_store):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_refresh(view_name):
            started.set()
            await release.wait()

        mock_aggregate_store.refresh_view.side_effect = slow_refresh

        first = asyncio.create_task(view_service.refresh(VIEW))
        await started.wait()

        second = await view_service.refresh(VIEW)
        third = await view_service.refresh(VIEW)

        assert second.status == RefreshState.REFRESHING
        assert third == second

        release.set()
        completed = await first

        assert completed.status == RefreshState.COMPLETED
        assert mock_aggregate_store.refresh_view.await_count == 1

    @pytest.mark.asyncio
    async def test_gathered_refreshes_run_once(self, view_service, mock_aggregate_store):
        async def yielding_refresh(view_name):
            await asyncio.sleep(0)

        mock_aggregate_store.refresh_view.side_effect = yielding_refresh

        results = await asyncio.gather(view_service.refresh(VIEW), view_service.refresh(VIEW))

        assert sorted(r.status.value for r in results) == ["COMPLETED", "REFRESHING"]
        assert mock_aggregate_store.refresh_view.await_count == 1

    @pytest.mark.asyncio
    async def test_live_lease_from_another_refresher_skips(
        self, view_service, mock_aggregate_store, memory_cache, now
    ):
        await _store_lease(memory_cache, RefreshLease(
            view_name=VIEW, owner="other-process", acquired_at=now, expires_at=now + timedelta(minutes=30)
        ))

        status = await view_service.refresh(VIEW)

        assert status.status == RefreshState.REFRESHING
        mock_aggregate_store.refresh_view.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_lease_is_ignored(self, view_service, mock_aggregate_store, memory_cache, now):
        await _store_lease(memory_cache, RefreshLease(
            view_name=VIEW, owner="crashed-process", acquired_at=now - timedelta(hours=1),
            expires_at=now - timedelta(minutes=30)
        ))

        status = await view_service.refresh(VIEW)

        assert status.status == RefreshState.COMPLETED
        mock_aggregate_store.refresh_view.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_overrides_live_lease(self, view_service, mock_aggregate_store, memory_cache, now):
        await _store_lease(memory_cache, RefreshLease(
            view_name=VIEW, owner="other-process", acquired_at=now, expires_at=now + timedelta(minutes=30)
        ))

        status = await view_service.refresh(VIEW, force=True)

        assert status.status == RefreshState.COMPLETED
        mock_aggregate_store.refresh_view.assert_awaited_once()
        assert await memory_cache.get(CacheKeyBuilder.refresh_lock_key(VIEW)) is None

    @pytest.mark.asyncio
    async def test_lease_owned_by_another_is_not_released(
        self, view_service, mock_aggregate_store, memory_cache, now
    ):
        other = RefreshLease(
            view_name=VIEW, owner="other-process", acquired_at=now, expires_at=now + timedelta(minutes=30)
        )

        async def taken_over(view_name):
            await _store_lease(memory_cache, other)

        mock_aggregate_store.refresh_view.side_effect = taken_over

        await view_service.refresh(VIEW)

        remaining = await memory_cache.get(CacheKeyBuilder.refresh_lock_key(VIEW))
        assert remaining["owner"] == "other-process"

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_raised(
        self, view_service, mock_aggregate_store, analytics_store, memory_cache
    ):
        mock_aggregate_store.refresh_view.side_effect = RuntimeError("boom")

        with pytest.raises(DataSourceError):
            await view_service.refresh(VIEW)

        status = await view_service.get_status(VIEW)
        assert status.status == RefreshState.FAILED
        assert status.error == "boom"
        assert (await analytics_store.get_view_status(VIEW)).status == RefreshState.FAILED
        assert await memory_cache.get(CacheKeyBuilder.refresh_lock_key(VIEW)) is None

    @pytest.mark.asyncio
    async def test_view_can_be_refreshed_after_failure(self, view_service, mock_aggregate_store):
        mock_aggregate_store.refresh_view.side_effect = [RuntimeError("boom"), None]

        with pytest.raises(DataSourceError):
            await view_service.refresh(VIEW)
        status = await view_service.refresh(VIEW)

        assert status.status == RefreshState.COMPLETED
        assert status.error is None

    @pytest.mark.asyncio
    async def test_cache_outage_does_not_block_refresh(
        self, analytics_store, mock_aggregate_store, clock, test_settings
    ):
        broken_cache = MagicMock()
        broken_cache.get = AsyncMock(side_effect=ConnectionError("redis down"))
        broken_cache.set = AsyncMock(side_effect=ConnectionError("redis down"))
        broken_cache.delete = AsyncMock(side_effect=ConnectionError("redis down"))
        service = MaterializedViewService(
            broken_cache, analytics_store, mock_aggregate_store, clock=clock, settings=test_settings
        )

        status = await service.refresh(VIEW)

        assert status.status == RefreshState.COMPLETED
        assert (await analytics_store.get_view_status(VIEW)).status == RefreshState.COMPLETED


@pytest.mark.unit
class TestRefreshAll:
    """Test fail-isolated refresh of every view."""

    @pytest.mark.asyncio
    async def test_one_failing_view_does_not_affect_others(
        self, memory_cache, analytics_store, mock_aggregate_store, clock, test_settings
    ):
        views = ("daily_spending_summary", "cashflow_analysis", "net_worth_tracking")

        async def refresh(view_name):
            if view_name == "cashflow_analysis":
                raise RuntimeError("cashflow query timed out")

        mock_aggregate_store.refresh_view.side_effect = refresh
        service = MaterializedViewService(
            memory_cache, analytics_store, mock_aggregate_store,
            view_names=views, clock=clock, settings=test_settings
        )

        statuses = await service.refresh_all()

        assert [s.view_name for s in statuses] == list(views)
        assert [s.status for s in statuses] == [
            RefreshState.COMPLETED, RefreshState.FAILED, RefreshState.COMPLETED
        ]
        assert statuses[1].error == "cashflow query timed out"

    @pytest.mark.asyncio
    async def test_failed_view_reports_recorded_status(self, view_service, mock_aggregate_store, now):
        await view_service.refresh(VIEW)
        mock_aggregate_store.refresh_view.side_effect = RuntimeError("boom")

        statuses = await view_service.refresh_all()
        failed = next(s for s in statuses if s.view_name == VIEW)

        assert failed == await view_service.get_status(VIEW)
        assert failed.status == RefreshState.FAILED
        assert failed.last_refreshed == now
        assert failed.duration_ms is not None
        assert failed.error == "boom"

    @pytest.mark.asyncio
    async def test_unrecorded_failure_keeps_last_refresh_time(
        self, view_service, mock_aggregate_store, analytics_store, now
    ):
        await view_service.refresh(VIEW)
        analytics_store.upsert_view_status = AsyncMock(side_effect=RuntimeError("status store down"))

        statuses = await view_service.refresh_all(force=True)
        failed = next(s for s in statuses if s.view_name == VIEW)

        assert failed.status == RefreshState.FAILED
        assert failed.last_refreshed == now
        assert failed.error == "status store down"

    @pytest.mark.asyncio
    async def test_refresh_all_with_in_memory_views(
        self, memory_cache, analytics_store, aggregate_store, ledger, sample_transactions, clock, test_settings
    ):
        ledger.add_transactions(sample_transactions)
        service = MaterializedViewService(
            memory_cache, analytics_store, aggregate_store, clock=clock, settings=test_settings
        )

        statuses = await service.refresh_all()

        assert len(statuses) == len(VIEW_NAMES)
        assert all(s.status == RefreshState.COMPLETED for s in statuses)
        assert not aggregate_store.get_view("daily_spending_summary").empty


@pytest.mark.unit
class TestGetStatus:
    """Test status reads."""

    @pytest.mark.asyncio
    async def test_never_refreshed_view_defaults_to_completed_epoch(self, view_service):
        status = await view_service.get_status(VIEW)

        assert status.status == RefreshState.COMPLETED
        assert status.last_refreshed == EPOCH

    @pytest.mark.asyncio
    async def test_status_read_through_from_store(self, view_service, analytics_store, memory_cache, now):
        stored = MaterializedViewStatus(
            view_name=VIEW, last_refreshed=now, next_refresh=now, status=RefreshState.COMPLETED, duration_ms=12
        )
        await analytics_store.upsert_view_status(VIEW, stored)

        status = await view_service.get_status(VIEW)

        assert status == stored
        assert await memory_cache.get(CacheKeyBuilder.refresh_status_key(VIEW)) is not None

    @pytest.mark.asyncio
    async def test_get_all_statuses(self, view_service):
        statuses = await view_service.get_all_statuses()

        assert [s.view_name for s in statuses] == list(VIEW_NAMES)

    @pytest.mark.asyncio
    async def test_unknown_view_status_raises(self, view_service):
        with pytest.raises(ValidationError):
            await view_service.get_status("missing_view")
