"""
Spending pattern detection.

Groups a household's expense aggregates by category at four granularities
(daily, weekly, monthly, seasonal) and surfaces the groups that recur often
enough and with low enough dispersion to be called a pattern.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple, Union

import structlog

from ..infrastructure.interfaces import AnalyticsStore, Ledger
from ..models.analytics import PatternAnalysisOptions, SpendingPattern
from ..models.financial import DateRange, TransactionAggregate, TransactionFilters
from ..utils.constants import (
    DAILY_LOOKBACK_DAYS,
    MIN_TREND_SAMPLES,
    MONTHLY_LOOKBACK_MONTHS,
    SEASONAL_LOOKBACK_MONTHS,
    TREND_CHANGE_THRESHOLD_PERCENT,
    TREND_LOOKBACK_MONTHS,
    UNCATEGORIZED,
    WEEKLY_LOOKBACK_DAYS,
    PatternType,
    Period,
    TrendDirection,
)
from ..utils.exceptions import data_source_guard
from ..utils.periods import Clock, months_before
from ..utils.validators import ensure_valid, parse_options, validate_household_id
from .statistics import confidence_score, mean

logger = structlog.get_logger()

# (category_id or UNCATEGORIZED, optional sub-key such as weekday or month)
GroupKey = Tuple[str, Optional[int]]


class SpendingPatternService:
    """Detects and stores recurring spending patterns."""

    def __init__(self, ledger: Ledger, store: AnalyticsStore, clock: Optional[Clock] = None):
        self.ledger = ledger
        self.store = store
        self._clock = clock or datetime.utcnow

    async def analyze_patterns(
        self,
        household_id: str,
        options: Optional[Union[PatternAnalysisOptions, Dict[str, Any]]] = None
    ) -> List[SpendingPattern]:
        """Detect patterns and replace the household's stored pattern set with them."""
        patterns = await self.detect_patterns(household_id, options)

        async with data_source_guard("analytics_store", "replace_patterns", household_id=household_id):
            await self.store.replace_patterns(household_id.strip(), patterns)

        return patterns

    async def detect_patterns(
        self,
        household_id: str,
        options: Optional[Union[PatternAnalysisOptions, Dict[str, Any]]] = None
    ) -> List[SpendingPattern]:
        """Detect patterns without persisting them."""
        household_id = ensure_valid(validate_household_id, household_id)
        options = parse_options(PatternAnalysisOptions, options)
        now = self._clock()

        logger.info(
            "Analyzing spending patterns",
            household_id=household_id,
            min_frequency=options.min_frequency,
            min_confidence=options.min_confidence
        )

        detectors = [
            self._detect_daily(household_id, options, now),
            self._detect_weekly(household_id, options, now),
            self._detect_monthly(household_id, options, now),
        ]
        if options.include_seasonality:
            detectors.append(self._detect_seasonal(household_id, options, now))

        results = await asyncio.gather(*detectors)
        patterns = [pattern for group in results for pattern in group]

        if options.include_trends and patterns:
            await self._add_trends(household_id, patterns, now)

        logger.info("Spending patterns detected", household_id=household_id, count=len(patterns))
        return patterns

    async def get_patterns(self, household_id: str) -> List[SpendingPattern]:
        """Read the household's stored pattern set."""
        household_id = ensure_valid(validate_household_id, household_id)

        async with data_source_guard("analytics_store", "get_patterns", household_id=household_id):
            return await self.store.get_patterns(household_id)

    async def _detect_daily(self, household_id, options, now) -> List[SpendingPattern]:
        end = now.date()
        date_range = DateRange(start_date=end - timedelta(days=DAILY_LOOKBACK_DAYS), end_date=end)
        aggregates = await self._expense_aggregates(household_id, date_range, Period.DAILY, PatternType.DAILY)

        groups = self._bucket_sums(aggregates, lambda agg: None)
        return self._build_patterns(household_id, PatternType.DAILY, groups, aggregates, options, now)

    async def _detect_weekly(self, household_id, options, now) -> List[SpendingPattern]:
        end = now.date()
        date_range = DateRange(start_date=end - timedelta(days=WEEKLY_LOOKBACK_DAYS), end_date=end)
        aggregates = await self._expense_aggregates(household_id, date_range, Period.DAILY, PatternType.WEEKLY)

        groups = self._bucket_sums(aggregates, lambda agg: agg.bucket.weekday())
        return self._build_patterns(household_id, PatternType.WEEKLY, groups, aggregates, options, now)

    async def _detect_monthly(self, household_id, options, now) -> List[SpendingPattern]:
        end = now.date()
        date_range = DateRange(start_date=months_before(end, MONTHLY_LOOKBACK_MONTHS), end_date=end)
        aggregates = await self._expense_aggregates(household_id, date_range, Period.MONTHLY, PatternType.MONTHLY)

        groups = self._bucket_sums(aggregates, lambda agg: None)
        return self._build_patterns(household_id, PatternType.MONTHLY, groups, aggregates, options, now)

    async def _detect_seasonal(self, household_id, options, now) -> List[SpendingPattern]:
        end = now.date()
        date_range = DateRange(start_date=months_before(end, SEASONAL_LOOKBACK_MONTHS), end_date=end)
        aggregates = await self._expense_aggregates(household_id, date_range, Period.MONTHLY, PatternType.SEASONAL)

        groups = self._bucket_sums(aggregates, lambda agg: agg.bucket.month)
        return self._build_patterns(household_id, PatternType.SEASONAL, groups, aggregates, options, now)

    async def _expense_aggregates(
        self,
        household_id: str,
        date_range: DateRange,
        period: Period,
        pattern_type: PatternType
    ) -> List[TransactionAggregate]:
        async with data_source_guard(
            "ledger",
            "query_aggregates",
            household_id=household_id,
            pattern_type=pattern_type.value
        ):
            aggregates = await self.ledger.query_aggregates(
                household_id, date_range, period, TransactionFilters()
            )
        return [agg for agg in aggregates if agg.expense_cents > 0]

    @staticmethod
    def _bucket_sums(
        aggregates: List[TransactionAggregate],
        sub_key: Callable[[TransactionAggregate], Optional[int]]
    ) -> Dict[GroupKey, Dict[Hashable, int]]:
        """Sum expenses per group and bucket, across currencies."""
        groups: Dict[GroupKey, Dict[Hashable, int]] = defaultdict(lambda: defaultdict(int))
        for agg in aggregates:
            key = (agg.category_id or UNCATEGORIZED, sub_key(agg))
            groups[key][agg.bucket] += agg.expense_cents
        return groups

    @staticmethod
    def _category_names(aggregates: List[TransactionAggregate]) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for agg in aggregates:
            category = agg.category_id or UNCATEGORIZED
            if agg.category_name and category not in names:
                names[category] = agg.category_name
        return names

    def _build_patterns(
        self,
        household_id: str,
        pattern_type: PatternType,
        groups: Dict[GroupKey, Dict[Hashable, int]],
        aggregates: List[TransactionAggregate],
        options: PatternAnalysisOptions,
        now: datetime
    ) -> List[SpendingPattern]:
        names = self._category_names(aggregates)
        patterns = []

        for (category, sub_key), buckets in sorted(groups.items(), key=lambda item: (item[0][0], item[0][1] or 0)):
            sums = list(buckets.values())
            if len(sums) < options.min_frequency:
                continue

            confidence = confidence_score(sums)
            if confidence < options.min_confidence:
                continue

            patterns.append(SpendingPattern(
                household_id=household_id,
                type=pattern_type,
                category_id=None if category == UNCATEGORIZED else category,
                category_name=names.get(category, "Uncategorized"),
                day_of_week=sub_key if pattern_type == PatternType.WEEKLY else None,
                month=sub_key if pattern_type == PatternType.SEASONAL else None,
                average_amount=mean(sums),
                frequency=len(sums),
                confidence=confidence,
                last_updated=now,
            ))

        return patterns

    async def _add_trends(self, household_id: str, patterns: List[SpendingPattern], now: datetime) -> None:
        """Attach a trend direction to every pattern, one ledger query per category."""
        trends: Dict[Optional[str], TrendDirection] = {}
        for pattern in patterns:
            if pattern.category_id not in trends:
                trends[pattern.category_id] = await self._calculate_trend(household_id, pattern.category_id, now)
            pattern.trend = trends[pattern.category_id]

    async def _calculate_trend(
        self,
        household_id: str,
        category_id: Optional[str],
        now: datetime
    ) -> TrendDirection:
        end = now.date()
        date_range = DateRange(start_date=months_before(end, TREND_LOOKBACK_MONTHS), end_date=end)
        filters = TransactionFilters(category_ids=[category_id] if category_id else [])

        async with data_source_guard(
            "ledger",
            "query_transactions",
            household_id=household_id,
            category_id=category_id or UNCATEGORIZED
        ):
            transactions = await self.ledger.query_transactions(
                household_id, date_range, filters, order_by_date=True
            )

        amounts = [
            t.absolute_amount for t in transactions
            if t.is_expense and (category_id or t.category_id is None)
        ]
        return classify_trend(amounts)


def classify_trend(amounts: List[float]) -> TrendDirection:
    """Compare the mean of the second half of a date-ordered series with the first half."""
    if len(amounts) < MIN_TREND_SAMPLES:
        return TrendDirection.STABLE

    half = len(amounts) // 2
    first_mean = mean(amounts[:half])
    second_mean = mean(amounts[half:])

    if first_mean == 0:
        return TrendDirection.STABLE

    change_percent = (second_mean - first_mean) / first_mean * 100
    if change_percent > TREND_CHANGE_THRESHOLD_PERCENT:
        return TrendDirection.INCREASING
    if change_percent < -TREND_CHANGE_THRESHOLD_PERCENT:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE
