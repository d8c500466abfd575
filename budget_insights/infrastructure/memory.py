"""
In-memory collaborator implementations.

Used for tests, local runs and as the reference behaviour for the other
backends. Every replace operation happens under a single asyncio.Lock so
readers never see a half-applied batch.
"""
import asyncio
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd
import structlog

from ..models.analytics import SpendingPattern, TrendPoint
from ..models.financial import DateRange, Transaction, TransactionAggregate, TransactionFilters
from ..models.insights import Insight
from ..models.views import MaterializedViewStatus
from ..utils.constants import InsightType, Period, TrendType
from ..utils.exceptions import NotFoundError
from ..utils.periods import bucket_start, to_date
from .interfaces import AggregateStore, AnalyticsStore, BalanceHistorySource, Ledger
from .views import VIEW_BUILDERS, aggregate_transactions, net_worth_tracking, transactions_frame

logger = structlog.get_logger()


class InMemoryLedger(Ledger):
    """Ledger backed by a list of transactions."""

    def __init__(self, transactions: Optional[Iterable[Transaction]] = None):
        self._transactions: List[Transaction] = list(transactions or [])

    def add_transactions(self, transactions: Iterable[Transaction]) -> None:
        self._transactions.extend(transactions)

    def all_transactions(self) -> List[Transaction]:
        return list(self._transactions)

    async def query_transactions(
        self,
        household_id: str,
        date_range: DateRange,
        filters: Optional[TransactionFilters] = None,
        order_by_date: bool = True
    ) -> List[Transaction]:
        filters = filters or TransactionFilters()

        rows = [
            t for t in self._transactions
            if t.household_id == household_id
            and date_range.contains(to_date(t.date))
            and filters.matches(t)
        ]

        if order_by_date:
            rows.sort(key=lambda t: t.date)

        return rows

    async def query_aggregates(
        self,
        household_id: str,
        date_range: DateRange,
        group_by: Period,
        filters: Optional[TransactionFilters] = None
    ) -> List[TransactionAggregate]:
        rows = await self.query_transactions(household_id, date_range, filters)
        return aggregate_transactions(rows, group_by)


class InMemoryAnalyticsStore(AnalyticsStore):
    """Analytics store keeping patterns, insights and view statuses in dicts."""

    def __init__(self):
        self._patterns: Dict[str, List[SpendingPattern]] = defaultdict(list)
        self._insights: Dict[str, Insight] = {}
        self._view_statuses: Dict[str, MaterializedViewStatus] = {}
        self._lock = asyncio.Lock()

    async def replace_patterns(self, household_id: str, patterns: Sequence[SpendingPattern]) -> None:
        async with self._lock:
            self._patterns[household_id] = [p.model_copy(deep=True) for p in patterns]

        logger.info("Patterns replaced", household_id=household_id, count=len(patterns))

    async def get_patterns(self, household_id: str) -> List[SpendingPattern]:
        async with self._lock:
            return [p.model_copy(deep=True) for p in self._patterns.get(household_id, [])]

    async def replace_insights(
        self,
        household_id: str,
        types: Sequence[InsightType],
        insights: Sequence[Insight]
    ) -> None:
        replaced_types = set(types)

        async with self._lock:
            stale_ids = [
                insight_id for insight_id, insight in self._insights.items()
                if insight.household_id == household_id and insight.type in replaced_types
            ]
            for insight_id in stale_ids:
                del self._insights[insight_id]

            for insight in insights:
                self._insights[insight.id] = insight.model_copy(deep=True)

        logger.info(
            "Insights replaced",
            household_id=household_id,
            types=sorted(t.value for t in replaced_types),
            deleted=len(stale_ids),
            inserted=len(insights)
        )

    async def replace_analysis(
        self,
        household_id: str,
        patterns: Sequence[SpendingPattern],
        types: Sequence[InsightType],
        insights: Sequence[Insight]
    ) -> None:
        replaced_types = set(types)

        async with self._lock:
            # Build both replacements before touching stored state
            new_patterns = [p.model_copy(deep=True) for p in patterns]
            new_insights = {
                insight_id: insight for insight_id, insight in self._insights.items()
                if not (insight.household_id == household_id and insight.type in replaced_types)
            }
            deleted = len(self._insights) - len(new_insights)
            for insight in insights:
                new_insights[insight.id] = insight.model_copy(deep=True)

            self._patterns[household_id] = new_patterns
            self._insights = new_insights

        logger.info(
            "Analysis replaced",
            household_id=household_id,
            patterns=len(patterns),
            types=sorted(t.value for t in replaced_types),
            deleted=deleted,
            inserted=len(insights)
        )

    async def get_insights(self, household_id: str) -> List[Insight]:
        async with self._lock:
            return [
                insight.model_copy(deep=True)
                for insight in self._insights.values()
                if insight.household_id == household_id
            ]

    async def dismiss_insight(self, insight_id: str) -> Insight:
        async with self._lock:
            insight = self._insights.get(insight_id)
            if insight is None:
                raise NotFoundError(resource_type="insight", resource_id=insight_id)

            insight.is_dismissed = True
            return insight.model_copy(deep=True)

    async def upsert_view_status(self, view_name: str, status: MaterializedViewStatus) -> None:
        async with self._lock:
            self._view_statuses[view_name] = status.model_copy(deep=True)

    async def get_view_status(self, view_name: str) -> Optional[MaterializedViewStatus]:
        async with self._lock:
            status = self._view_statuses.get(view_name)
            return status.model_copy(deep=True) if status else None


class InMemoryAggregateStore(AggregateStore, BalanceHistorySource):
    """Materialized views computed with pandas from an in-memory ledger."""

    def __init__(self, ledger: InMemoryLedger):
        self.ledger = ledger
        self._views: Dict[str, pd.DataFrame] = {}

    async def refresh_view(self, view_name: str) -> None:
        builder = VIEW_BUILDERS.get(view_name)
        if builder is None:
            raise NotFoundError(resource_type="materialized view", resource_id=view_name)

        frame = transactions_frame(self.ledger.all_transactions())
        self._views[view_name] = builder(frame)

        logger.debug("Materialized view rebuilt", view_name=view_name, rows=len(self._views[view_name]))

    def get_view(self, view_name: str) -> Optional[pd.DataFrame]:
        """Return the last materialized frame for a view, if any."""
        frame = self._views.get(view_name)
        return frame.copy() if frame is not None else None

    async def net_worth_series(
        self,
        household_id: str,
        date_range: DateRange,
        period: Period,
        currency: Optional[str] = None
    ) -> List[TrendPoint]:
        """Net worth at the end of each bucket, read from the net worth view."""
        frame = self.get_view("net_worth_tracking")
        if frame is None:
            frame = net_worth_tracking(transactions_frame(self.ledger.all_transactions()))

        frame = frame[frame["household_id"] == household_id]
        if currency:
            frame = frame[frame["currency"] == currency]
        if frame.empty:
            return []

        # Carry each currency forward before summing, then keep the last snapshot per bucket
        daily = (
            frame.pivot_table(index="date", columns="currency", values="net_worth_cents", aggfunc="last")
            .sort_index()
            .ffill()
            .fillna(0)
            .sum(axis=1)
        )
        points: Dict = {}
        for timestamp, value in daily.items():
            day = timestamp.date()
            if not date_range.contains(day):
                continue
            points[bucket_start(day, period)] = float(value)

        return [
            TrendPoint(date=bucket, value=value, type=TrendType.NET_WORTH)
            for bucket, value in sorted(points.items())
        ]
