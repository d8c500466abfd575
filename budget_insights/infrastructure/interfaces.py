"""
Collaborator interfaces consumed by the engine.

The engine never owns durable storage. It reads from a ledger, keeps
short-lived values in a cache and writes derived results to an analytics
store. Any backend (in-memory, Firestore, Redis...) must implement these.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from ..models.analytics import SpendingPattern, TrendPoint
from ..models.financial import DateRange, Transaction, TransactionAggregate, TransactionFilters
from ..models.insights import Insight
from ..models.views import MaterializedViewStatus
from ..utils.constants import InsightType, Period


class Ledger(ABC):
    """Read-only access to the household transaction ledger."""

    @abstractmethod
    async def query_aggregates(
        self,
        household_id: str,
        date_range: DateRange,
        group_by: Period,
        filters: Optional[TransactionFilters] = None
    ) -> List[TransactionAggregate]:
        """
        Aggregate transactions into (bucket, category, currency) rows.

        Args:
            household_id: Household to query
            date_range: Inclusive date range
            group_by: Bucket granularity
            filters: Optional filters; transfers are excluded unless requested

        Returns:
            One aggregate per (bucket, category, currency), ordered by bucket
        """
        pass

    @abstractmethod
    async def query_transactions(
        self,
        household_id: str,
        date_range: DateRange,
        filters: Optional[TransactionFilters] = None,
        order_by_date: bool = True
    ) -> List[Transaction]:
        """
        List transactions matching the filters.

        Args:
            household_id: Household to query
            date_range: Inclusive date range
            filters: Optional filters; transfers are excluded unless requested
            order_by_date: Return rows in ascending date order

        Returns:
            Matching transactions
        """
        pass


class CacheBackend(ABC):
    """Key/value cache holding JSON-compatible values."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store a value with an optional TTL."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        pass


class AnalyticsStore(ABC):
    """
    Persistent store for derived analytics.

    Replace operations must be atomic: readers never observe the gap
    between removing the old set and inserting the new one.
    """

    @abstractmethod
    async def replace_patterns(self, household_id: str, patterns: Sequence[SpendingPattern]) -> None:
        """Replace the household's entire pattern set, also when patterns is empty."""
        pass

    @abstractmethod
    async def get_patterns(self, household_id: str) -> List[SpendingPattern]:
        pass

    @abstractmethod
    async def replace_insights(
        self,
        household_id: str,
        types: Sequence[InsightType],
        insights: Sequence[Insight]
    ) -> None:
        """Delete the household's insights of the given types and insert the batch."""
        pass

    @abstractmethod
    async def replace_analysis(
        self,
        household_id: str,
        patterns: Sequence[SpendingPattern],
        types: Sequence[InsightType],
        insights: Sequence[Insight]
    ) -> None:
        """
        Replace the household's patterns and its insights of the given types
        as one unit. Either both writes land or neither does.
        """
        pass

    @abstractmethod
    async def get_insights(self, household_id: str) -> List[Insight]:
        """Return every stored insight for the household, including dismissed ones."""
        pass

    @abstractmethod
    async def dismiss_insight(self, insight_id: str) -> Insight:
        """
        Mark an insight as dismissed.

        Raises:
            NotFoundError: If the insight doesn't exist
        """
        pass

    @abstractmethod
    async def upsert_view_status(self, view_name: str, status: MaterializedViewStatus) -> None:
        pass

    @abstractmethod
    async def get_view_status(self, view_name: str) -> Optional[MaterializedViewStatus]:
        pass


class AggregateStore(ABC):
    """Owner of the precomputed aggregates behind the materialized views."""

    @abstractmethod
    async def refresh_view(self, view_name: str) -> None:
        """Recompute one materialized view."""
        pass


class BalanceHistorySource(ABC):
    """Optional source of net worth snapshots."""

    @abstractmethod
    async def net_worth_series(
        self,
        household_id: str,
        date_range: DateRange,
        period: Period,
        currency: Optional[str] = None
    ) -> List[TrendPoint]:
        """Return one net worth point per period bucket."""
        pass
