"""
Trend series, seasonality and forecasting over ledger aggregates.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import structlog

from ..config import Settings, get_settings
from ..infrastructure.cache import CacheKeyBuilder, SafeCache
from ..infrastructure.interfaces import BalanceHistorySource, CacheBackend, Ledger
from ..models.analytics import (
    ForecastPoint,
    PeakPeriod,
    SeasonalFactor,
    SeasonalityData,
    TrendAnalysis,
    TrendOptions,
    TrendPoint,
)
from ..models.financial import AnalyticsFilters, DateRange, TransactionAggregate
from ..utils.constants import (
    FORECAST_MAX_CONFIDENCE,
    FORECAST_MIN_CONFIDENCE,
    MAX_PEAK_PERIODS,
    MIN_REGRESSION_POINTS,
    MIN_SEASONAL_FACTORS,
    MIN_SEASONALITY_POINTS,
    MONTH_NAMES,
    SEASONAL_LOOKBACK_MONTHS,
    SEASONAL_PEAK_FACTOR,
    SEASONALITY_CV_THRESHOLD,
    Period,
    TrendType,
)
from ..utils.exceptions import ValidationError, data_source_guard
from ..utils.periods import add_periods, bucket_start, months_before
from ..utils.validators import ensure_valid, parse_options, validate_date_range, validate_household_id
from .statistics import clamp, coefficient_of_variation, confidence_interval, linear_regression

logger = structlog.get_logger()

AGGREGATE_COLUMNS = ["bucket", "category", "income", "expense"]


def aggregates_frame(aggregates: List[TransactionAggregate]) -> pd.DataFrame:
    """Flatten aggregates into a frame with a display category per row."""
    if not aggregates:
        return pd.DataFrame(columns=AGGREGATE_COLUMNS)

    return pd.DataFrame([
        {
            "bucket": agg.bucket,
            "category": agg.category_name or agg.category_id or "Uncategorized",
            "income": agg.income_cents,
            "expense": agg.expense_cents,
        }
        for agg in aggregates
    ])


def bucket_range(first: date, last: date, period: Period) -> List[date]:
    """Every bucket start from first through last."""
    buckets = []
    current = first
    while current <= last:
        buckets.append(current)
        current = add_periods(current, period, 1)
    return buckets


def build_series(
    aggregates: List[TransactionAggregate],
    trend_type: TrendType,
    period: Optional[Period] = None,
    end_date: Optional[date] = None
) -> List[TrendPoint]:
    """
    Turn bucketed aggregates into a trend series.

    Spending and income sum the matching side per bucket. Net worth is the
    running sum of income minus expenses. Category series emit one point per
    (bucket, category) with the absolute amount moved.

    With a period, spending, income and net worth get one point per bucket
    from the first bucket with activity through the bucket holding end_date;
    buckets without flows count as zero.
    """
    df = aggregates_frame(aggregates)
    if df.empty:
        return []

    trend_type = TrendType(trend_type)

    buckets = None
    if period is not None:
        period = Period(period)
        last = max(df["bucket"])
        if end_date is not None:
            last = max(last, bucket_start(end_date, period))
        buckets = bucket_range(min(df["bucket"]), last, period)

    if trend_type == TrendType.CATEGORY:
        df["total"] = df["income"] + df["expense"]
        grouped = df.groupby(["bucket", "category"], sort=True)["total"].sum()
        return [
            TrendPoint(date=bucket, value=float(total), type=trend_type, category=category)
            for (bucket, category), total in grouped.items()
        ]

    if trend_type == TrendType.SPENDING:
        series = df[df["expense"] > 0].groupby("bucket", sort=True)["expense"].sum()
    elif trend_type == TrendType.INCOME:
        series = df[df["income"] > 0].groupby("bucket", sort=True)["income"].sum()
    else:
        flows = df.groupby("bucket", sort=True)[["income", "expense"]].sum()
        if buckets is not None:
            flows = flows.reindex(buckets, fill_value=0)
        series = (flows["income"] - flows["expense"]).cumsum()

    if buckets is not None and trend_type != TrendType.NET_WORTH:
        series = series.reindex(buckets, fill_value=0)

    return [
        TrendPoint(date=bucket, value=float(value), type=trend_type)
        for bucket, value in series.items()
    ]


def totals_by_date(trends: List[TrendPoint]) -> Dict[date, float]:
    """Collapse a (possibly per-category) series into one total per date."""
    totals: Dict[date, float] = {}
    for point in sorted(trends, key=lambda p: p.date):
        totals[point.date] = totals.get(point.date, 0.0) + point.value
    return totals


def calculate_seasonality(monthly_points: List[TrendPoint]) -> SeasonalityData:
    """Seasonal factor per calendar month relative to the overall mean."""
    totals = totals_by_date(monthly_points)
    if len(totals) < MIN_SEASONALITY_POINTS:
        return SeasonalityData()

    overall_mean = sum(totals.values()) / len(totals)

    by_month: Dict[int, List[float]] = {}
    for bucket, value in totals.items():
        by_month.setdefault(bucket.month, []).append(value)

    factors = []
    for month in sorted(by_month):
        values = by_month[month]
        factor = (sum(values) / len(values)) / overall_mean if overall_mean > 0 else 1.0
        factors.append(SeasonalFactor(period=MONTH_NAMES[month - 1], factor=factor))

    factor_values = [f.factor for f in factors]
    has_seasonality = (
        len(factors) >= MIN_SEASONAL_FACTORS
        and coefficient_of_variation(factor_values) > SEASONALITY_CV_THRESHOLD
    )

    peaks = sorted(
        (f for f in factors if f.factor > SEASONAL_PEAK_FACTOR),
        key=lambda f: f.factor,
        reverse=True
    )[:MAX_PEAK_PERIODS]

    return SeasonalityData(
        has_seasonality=has_seasonality,
        seasonal_factors=factors,
        peak_periods=[
            PeakPeriod(
                period=f.period,
                factor=f.factor,
                description=f"{round((f.factor - 1) * 100)}% above average"
            )
            for f in peaks
        ],
    )


def forecast_series(trends: List[TrendPoint], periods: int, period: Period) -> List[ForecastPoint]:
    """
    Extend a series with a least squares line over its index.

    Values and bounds are floored at zero; confidence is R squared clamped
    to [0.1, 0.9]. Fewer than three distinct dates yields no forecast.
    """
    totals = totals_by_date(trends)
    if len(totals) < MIN_REGRESSION_POINTS:
        return []

    dates = list(totals.keys())
    regression = linear_regression(list(totals.values()))
    confidence = clamp(regression.r_squared, FORECAST_MIN_CONFIDENCE, FORECAST_MAX_CONFIDENCE)
    last_date = dates[-1]

    forecast = []
    for step in range(1, periods + 1):
        x = len(dates) + step - 1
        raw = regression.predict(x)
        margin = confidence_interval(regression, x)
        forecast.append(ForecastPoint(
            date=add_periods(last_date, period, step),
            predicted_value=max(0.0, raw),
            lower_bound=max(0.0, raw - margin),
            upper_bound=max(0.0, raw + margin),
            confidence=confidence,
        ))

    return forecast


class TrendAnalyticsService:
    """Builds cached trend analyses for a household."""

    def __init__(
        self,
        ledger: Ledger,
        cache: CacheBackend,
        balance_history: Optional[BalanceHistorySource] = None,
        settings: Optional[Settings] = None
    ):
        self.ledger = ledger
        self.cache = cache if isinstance(cache, SafeCache) else SafeCache(cache)
        self.balance_history = balance_history
        self.settings = settings or get_settings()

    async def get_trend_analysis(
        self,
        household_id: str,
        filters: Union[AnalyticsFilters, Dict[str, Any]],
        options: Optional[Union[TrendOptions, Dict[str, Any]]] = None
    ) -> TrendAnalysis:
        household_id = ensure_valid(validate_household_id, household_id)
        if filters is None:
            raise ValidationError(message="Trend analysis requires filters with a date range")
        filters = parse_options(AnalyticsFilters, filters)
        ensure_valid(validate_date_range, filters.date_range.start_date, filters.date_range.end_date)
        options = parse_options(TrendOptions, options)

        cache_key = CacheKeyBuilder.computation_key(
            "trend_analysis",
            household_id,
            {"filters": filters.model_dump(mode="json"), "options": options.model_dump(mode="json")}
        )
        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Trend analysis served from cache", household_id=household_id)
            return TrendAnalysis.model_validate(cached)

        trends = await self.get_trends(household_id, filters, options.period, options.trend_type)

        seasonality = None
        if options.include_seasonality:
            seasonality = await self.get_seasonality(household_id, filters, options.trend_type)

        forecast = None
        if options.include_forecast:
            forecast = self.get_forecast(trends, options.forecast_periods, options.period)

        analysis = TrendAnalysis(
            period=options.period,
            trend_type=options.trend_type,
            trends=trends,
            seasonality=seasonality,
            forecast=forecast,
        )

        await self.cache.set(cache_key, analysis.model_dump(mode="json"), self.settings.trend_cache_ttl)

        logger.info(
            "Trend analysis computed",
            household_id=household_id,
            period=options.period.value,
            trend_type=options.trend_type.value,
            points=len(trends)
        )
        return analysis

    async def get_trends(
        self,
        household_id: str,
        filters: AnalyticsFilters,
        period: Period,
        trend_type: TrendType
    ) -> List[TrendPoint]:
        if trend_type == TrendType.NET_WORTH and self.balance_history is not None:
            async with data_source_guard("balance_history", "net_worth_series", household_id=household_id):
                return await self.balance_history.net_worth_series(
                    household_id, filters.date_range, period, filters.currency
                )

        aggregates = await self._aggregates(household_id, filters.date_range, period, filters)
        return build_series(aggregates, trend_type, period, filters.date_range.end_date)

    async def get_seasonality(
        self,
        household_id: str,
        filters: AnalyticsFilters,
        trend_type: TrendType = TrendType.SPENDING
    ) -> SeasonalityData:
        """Seasonality over the 24 months ending at the filter end date."""
        end = filters.date_range.end_date
        history = DateRange(start_date=months_before(end, SEASONAL_LOOKBACK_MONTHS), end_date=end)

        aggregates = await self._aggregates(household_id, history, Period.MONTHLY, filters)
        seasonality = calculate_seasonality(build_series(aggregates, trend_type, Period.MONTHLY, end))

        if not seasonality.seasonal_factors:
            logger.info("Not enough history for seasonality", household_id=household_id)
        return seasonality

    def get_forecast(self, trends: List[TrendPoint], periods: int, period: Period) -> List[ForecastPoint]:
        return forecast_series(trends, periods, period)

    async def _aggregates(
        self,
        household_id: str,
        date_range: DateRange,
        period: Period,
        filters: AnalyticsFilters
    ) -> List[TransactionAggregate]:
        async with data_source_guard(
            "ledger",
            "query_aggregates",
            household_id=household_id,
            period=Period(period).value
        ):
            return await self.ledger.query_aggregates(
                household_id, date_range, period, filters.transaction_filters()
            )
