"""
Background scheduler for materialized view refreshes.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from ..config import Settings, get_settings
from ..utils.constants import RefreshState
from ..utils.periods import Clock
from .materialized_views import MaterializedViewService

logger = structlog.get_logger()


class ViewRefreshScheduler:
    """Periodically refreshes every view whose next_refresh is due."""

    def __init__(
        self,
        view_service: MaterializedViewService,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        self.view_service = view_service
        self.settings = settings or get_settings()
        self.interval_seconds = self.settings.view_refresh_interval
        self._clock = clock or datetime.utcnow

        self._task: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None
        self.last_stats: Dict[str, Any] = {}

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_due_refreshes(self) -> Dict[str, Any]:
        """Refresh the due views. A failing view is counted, never propagated."""
        stats: Dict[str, Any] = {
            "views_checked": 0,
            "views_refreshed": 0,
            "views_failed": 0,
            "views_skipped": 0,
            "errors": []
        }

        now = self._clock()
        statuses = await self.view_service.get_all_statuses()
        stats["views_checked"] = len(statuses)

        due = [status.view_name for status in statuses if status.next_refresh <= now]
        stats["views_skipped"] = len(statuses) - len(due)

        results = await asyncio.gather(
            *(self.view_service.refresh(view_name) for view_name in due),
            return_exceptions=True
        )

        for view_name, result in zip(due, results):
            if isinstance(result, Exception):
                stats["views_failed"] += 1
                stats["errors"].append(f"{view_name}: {result}")
            elif result.status == RefreshState.COMPLETED:
                stats["views_refreshed"] += 1
            else:
                # Another refresher holds the lease
                stats["views_skipped"] += 1

        self.last_run = now
        self.last_stats = stats

        logger.info(
            "Scheduled view refresh completed",
            checked=stats["views_checked"],
            refreshed=stats["views_refreshed"],
            failed=stats["views_failed"],
            skipped=stats["views_skipped"]
        )
        return stats

    async def start(self, interval_seconds: Optional[int] = None) -> None:
        """Start the background refresh loop."""
        if self.is_running:
            logger.warning("View refresh scheduler already running")
            return

        if interval_seconds is not None:
            self.interval_seconds = interval_seconds

        self._task = asyncio.create_task(self._run_loop())
        logger.info("View refresh scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

        logger.info("View refresh scheduler stopped")

    async def get_scheduler_status(self) -> Dict[str, Any]:
        """Get view refresh scheduler status."""
        statuses = await self.view_service.get_all_statuses()
        return {
            "scheduler_status": "running" if self.is_running else "stopped",
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_stats": self.last_stats,
            "views": [status.model_dump(mode="json") for status in statuses]
        }

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.run_due_refreshes()
            except Exception as e:
                logger.error("Scheduled view refresh failed", error=str(e))

            await asyncio.sleep(self.interval_seconds)
