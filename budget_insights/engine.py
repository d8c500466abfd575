"""
Engine facade wiring the analytics services to their collaborators.
"""
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from .config import Settings, get_settings
from .infrastructure import (
    get_aggregate_store,
    get_analytics_store,
    get_cache,
    get_ledger,
)
from .infrastructure.interfaces import (
    AggregateStore,
    AnalyticsStore,
    BalanceHistorySource,
    CacheBackend,
    Ledger,
)
from .logging_config import configure_logging
from .models.analytics import (
    AnomalyDetectionOptions,
    FinancialAnomaly,
    PatternAnalysisOptions,
    Recommendation,
    SpendingPattern,
    TrendAnalysis,
    TrendOptions,
)
from .models.financial import AnalyticsFilters
from .models.insights import Insight
from .models.views import MaterializedViewStatus
from .services import (
    AnomalyDetectionService,
    InsightsService,
    MaterializedViewService,
    RecommendationService,
    SpendingPatternService,
    TrendAnalyticsService,
    ViewRefreshScheduler,
)
from .utils.constants import VIEW_NAMES
from .utils.periods import Clock

logger = structlog.get_logger()


class InsightsEngine:
    """Single entry point for the household insights operations."""

    def __init__(
        self,
        ledger: Ledger,
        store: AnalyticsStore,
        cache: CacheBackend,
        aggregate_store: AggregateStore,
        balance_history: Optional[BalanceHistorySource] = None,
        view_names: Sequence[str] = VIEW_NAMES,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()

        self.patterns = SpendingPatternService(ledger, store, clock=clock)
        self.anomalies = AnomalyDetectionService(ledger, clock=clock)
        self.recommendations = RecommendationService(ledger, clock=clock)
        self.trends = TrendAnalyticsService(ledger, cache, balance_history, settings=self.settings)
        self.views = MaterializedViewService(
            cache, store, aggregate_store, view_names=view_names, clock=clock, settings=self.settings
        )
        self.scheduler = ViewRefreshScheduler(self.views, clock=clock, settings=self.settings)
        self.insights = InsightsService(
            self.patterns,
            self.anomalies,
            self.recommendations,
            store,
            clock=clock,
            settings=self.settings
        )

    async def analyze_patterns(
        self,
        household_id: str,
        options: Optional[Union[PatternAnalysisOptions, Dict[str, Any]]] = None
    ) -> List[SpendingPattern]:
        return await self.patterns.analyze_patterns(household_id, options)

    async def get_patterns(self, household_id: str) -> List[SpendingPattern]:
        return await self.patterns.get_patterns(household_id)

    async def detect_anomalies(
        self,
        household_id: str,
        options: Optional[Union[AnomalyDetectionOptions, Dict[str, Any]]] = None
    ) -> List[FinancialAnomaly]:
        return await self.anomalies.detect_anomalies(household_id, options)

    async def get_recommendations(self, household_id: str) -> List[Recommendation]:
        return await self.recommendations.generate_recommendations(household_id)

    async def get_trend_analysis(
        self,
        household_id: str,
        filters: Union[AnalyticsFilters, Dict[str, Any]],
        options: Optional[Union[TrendOptions, Dict[str, Any]]] = None
    ) -> TrendAnalysis:
        return await self.trends.get_trend_analysis(household_id, filters, options)

    async def refresh_view(self, view_name: str, force: bool = False) -> MaterializedViewStatus:
        return await self.views.refresh(view_name, force)

    async def refresh_all_views(self, force: bool = False) -> List[MaterializedViewStatus]:
        return await self.views.refresh_all(force)

    async def get_view_status(
        self,
        view_name: Optional[str] = None
    ) -> Union[MaterializedViewStatus, List[MaterializedViewStatus]]:
        """Status of one view, or of every view when no name is given."""
        if view_name is None:
            return await self.views.get_all_statuses()
        return await self.views.get_status(view_name)

    async def generate_insights(self, household_id: str) -> List[Insight]:
        return await self.insights.generate_insights(household_id)

    async def get_insights(self, household_id: str) -> List[Insight]:
        return await self.insights.get_insights(household_id)

    async def dismiss_insight(self, insight_id: str) -> Insight:
        return await self.insights.dismiss_insight(insight_id)

    async def start_scheduler(self, interval_seconds: Optional[int] = None) -> None:
        await self.scheduler.start(interval_seconds)

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        logger.info("Insights engine stopped")


# Global engine instance
_engine: Optional[InsightsEngine] = None


def get_engine() -> InsightsEngine:
    """Get the global engine, wired from settings on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        configure_logging(settings)

        aggregate_store = get_aggregate_store()
        balance_history = aggregate_store if isinstance(aggregate_store, BalanceHistorySource) else None

        _engine = InsightsEngine(
            ledger=get_ledger(),
            store=get_analytics_store(),
            cache=get_cache(),
            aggregate_store=aggregate_store,
            balance_history=balance_history,
            settings=settings,
        )
        logger.info(
            "Insights engine initialized",
            app_name=settings.app_name,
            version=settings.version,
            environment=settings.environment,
            storage_backend=settings.storage_backend
        )
    return _engine


def reset_engine() -> None:
    """Drop the global engine so the next get_engine() call rebuilds it."""
    global _engine
    _engine = None
