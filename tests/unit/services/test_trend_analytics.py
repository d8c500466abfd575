"""
Unit tests for trend analysis, seasonality and forecasting.
"""
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from budget_insights.models.analytics import TrendPoint
from budget_insights.models.financial import AnalyticsFilters, DateRange
from budget_insights.services.trend_analytics import (
    TrendAnalyticsService,
    calculate_seasonality,
    forecast_series,
)
from budget_insights.utils.constants import Period, TrendType
from budget_insights.utils.exceptions import ValidationError


@pytest.fixture
def trend_service(ledger, memory_cache, test_settings):
    return TrendAnalyticsService(ledger, memory_cache, settings=test_settings)


@pytest.fixture
def filters():
    return AnalyticsFilters(date_range=DateRange(start_date=date(2024, 1, 1), end_date=date(2024, 5, 31)))


@pytest.fixture
def growing_spending(ledger, make_transaction):
    """Monthly spending of 100, 200, 300, 400 and 500 EUR."""
    ledger.add_transactions([
        make_transaction(
            amount_cents=-10000 * month,
            category_id="cat_food",
            category_name="Food",
            date=datetime(2024, month, 10)
        )
        for month in range(1, 6)
    ])


def _points(values, start_month=1):
    return [
        TrendPoint(date=date(2024, start_month + i, 1), value=value, type=TrendType.SPENDING)
        for i, value in enumerate(values)
    ]


@pytest.mark.unit
class TestTrendSeries:
    """Test series construction per trend type."""

    @pytest.mark.asyncio
    async def test_monthly_spending(self, trend_service, filters, growing_spending):
        analysis = await trend_service.get_trend_analysis("hh_test", filters)

        assert analysis.period == Period.MONTHLY
        assert analysis.trend_type == TrendType.SPENDING
        assert [p.date for p in analysis.trends] == [date(2024, m, 1) for m in range(1, 6)]
        assert [p.value for p in analysis.trends] == [10000, 20000, 30000, 40000, 50000]
        assert analysis.seasonality is None
        assert analysis.forecast is None

    @pytest.mark.asyncio
    async def test_income_series(self, trend_service, ledger, make_transaction, filters):
        ledger.add_transactions([
            make_transaction(amount_cents=250000, date=datetime(2024, 2, 1)),
            make_transaction(amount_cents=-5000, date=datetime(2024, 3, 1)),
        ])

        analysis = await trend_service.get_trend_analysis("hh_test", filters, {"trend_type": "income"})

        assert [(p.date, p.value) for p in analysis.trends] == [
            (date(2024, 2, 1), 250000),
            (date(2024, 3, 1), 0),
            (date(2024, 4, 1), 0),
            (date(2024, 5, 1), 0),
        ]

    @pytest.mark.asyncio
    async def test_net_worth_is_running_sum(self, trend_service, ledger, make_transaction, filters):
        ledger.add_transactions([
            make_transaction(amount_cents=100000, date=datetime(2024, 1, 5)),
            make_transaction(amount_cents=-30000, date=datetime(2024, 1, 20)),
            make_transaction(amount_cents=-20000, date=datetime(2024, 2, 3)),
            make_transaction(amount_cents=-40000, date=datetime(2024, 2, 4), transfer_account_id="acc_savings"),
        ])

        analysis = await trend_service.get_trend_analysis("hh_test", filters, {"trend_type": "net_worth"})

        assert [p.value for p in analysis.trends] == [70000, 50000, 50000, 50000, 50000]

    @pytest.mark.asyncio
    async def test_net_worth_from_balance_history(self, ledger, memory_cache, test_settings, filters):
        points = [TrendPoint(date=date(2024, 1, 1), value=123456, type=TrendType.NET_WORTH)]
        balance_history = MagicMock()
        balance_history.net_worth_series = AsyncMock(return_value=points)
        service = TrendAnalyticsService(ledger, memory_cache, balance_history, settings=test_settings)

        analysis = await service.get_trend_analysis("hh_test", filters, {"trend_type": "net_worth"})

        assert analysis.trends == points
        balance_history.net_worth_series.assert_awaited_once_with(
            "hh_test", filters.date_range, Period.MONTHLY, None
        )

    @pytest.mark.asyncio
    async def test_category_series(self, trend_service, ledger, make_transaction, filters):
        ledger.add_transactions([
            make_transaction(amount_cents=-3000, category_id="cat_food", category_name="Food",
                             date=datetime(2024, 3, 2)),
            make_transaction(amount_cents=-2000, category_id="cat_food", category_name="Food",
                             date=datetime(2024, 3, 9)),
            make_transaction(amount_cents=-90000, category_id="cat_rent", category_name="Rent",
                             date=datetime(2024, 3, 1)),
        ])

        analysis = await trend_service.get_trend_analysis("hh_test", filters, {"trend_type": "category"})
        by_category = {p.category: p.value for p in analysis.trends}

        assert by_category == {"Food": 5000, "Rent": 90000}

    @pytest.mark.asyncio
    async def test_filters_restrict_series(self, trend_service, ledger, make_transaction, filters):
        ledger.add_transactions([
            make_transaction(amount_cents=-1000, category_id="cat_food", date=datetime(2024, 1, 2)),
            make_transaction(amount_cents=-7000, category_id="cat_fun", date=datetime(2024, 1, 3)),
        ])
        food_only = filters.model_copy(update={"category_ids": ["cat_food"]})

        analysis = await trend_service.get_trend_analysis("hh_test", food_only)

        assert [p.value for p in analysis.trends] == [1000, 0, 0, 0, 0]

    @pytest.mark.asyncio
    async def test_empty_months_count_as_zero(self, trend_service, ledger, make_transaction, filters):
        ledger.add_transactions([
            make_transaction(amount_cents=-10000, date=datetime(2024, 1, 10)),
            make_transaction(amount_cents=-30000, date=datetime(2024, 4, 10)),
        ])

        analysis = await trend_service.get_trend_analysis("hh_test", filters, {"include_forecast": True})

        assert [p.date for p in analysis.trends] == [date(2024, m, 1) for m in range(1, 6)]
        assert [p.value for p in analysis.trends] == [10000, 0, 0, 30000, 0]
        assert analysis.forecast[0].date == date(2024, 6, 1)


@pytest.mark.unit
class TestTrendAnalysisValidation:
    """Test input validation."""

    @pytest.mark.asyncio
    async def test_start_after_end_raises(self, trend_service):
        filters = {"date_range": {"start_date": "2024-05-01", "end_date": "2024-01-01"}}

        with pytest.raises(ValidationError):
            await trend_service.get_trend_analysis("hh_test", filters)

    @pytest.mark.asyncio
    async def test_equal_dates_raise(self, trend_service):
        filters = {"date_range": {"start_date": "2024-05-01", "end_date": "2024-05-01"}}

        with pytest.raises(ValidationError):
            await trend_service.get_trend_analysis("hh_test", filters)

    @pytest.mark.asyncio
    async def test_missing_filters_raise(self, trend_service):
        with pytest.raises(ValidationError):
            await trend_service.get_trend_analysis("hh_test", None)

    @pytest.mark.asyncio
    async def test_invalid_period_raises(self, trend_service, filters):
        with pytest.raises(ValidationError):
            await trend_service.get_trend_analysis("hh_test", filters, {"period": "hourly"})


@pytest.mark.unit
class TestTrendAnalysisCache:
    """Test best-effort caching."""

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, trend_service, ledger, filters, growing_spending):
        first = await trend_service.get_trend_analysis("hh_test", filters)

        ledger._transactions.clear()
        second = await trend_service.get_trend_analysis("hh_test", filters)

        assert second == first

    @pytest.mark.asyncio
    async def test_different_options_are_recomputed(self, trend_service, ledger, filters, growing_spending):
        await trend_service.get_trend_analysis("hh_test", filters)

        ledger._transactions.clear()
        weekly = await trend_service.get_trend_analysis("hh_test", filters, {"period": "weekly"})

        assert weekly.trends == []

    @pytest.mark.asyncio
    async def test_cache_outage_falls_back_to_computation(self, ledger, test_settings, filters, growing_spending):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=ConnectionError("cache down"))
        backend.set = AsyncMock(side_effect=ConnectionError("cache down"))
        service = TrendAnalyticsService(ledger, backend, settings=test_settings)

        analysis = await service.get_trend_analysis("hh_test", filters)

        assert len(analysis.trends) == 5


@pytest.mark.unit
class TestForecast:
    """Test linear forecasting."""

    @pytest.mark.asyncio
    async def test_forecast_extends_line(self, trend_service, filters, growing_spending):
        analysis = await trend_service.get_trend_analysis(
            "hh_test", filters, {"include_forecast": True, "forecast_periods": 3}
        )

        forecast = analysis.forecast
        assert [f.date for f in forecast] == [date(2024, 6, 1), date(2024, 7, 1), date(2024, 8, 1)]
        assert [f.predicted_value for f in forecast] == pytest.approx([60000, 70000, 80000])
        assert all(f.confidence == pytest.approx(0.9) for f in forecast)
        assert all(f.lower_bound <= f.predicted_value <= f.upper_bound for f in forecast)

    def test_needs_three_points(self):
        assert forecast_series(_points([100, 200]), 3, Period.MONTHLY) == []

    def test_predictions_never_negative(self):
        forecast = forecast_series(_points([300, 200, 100]), 4, Period.MONTHLY)

        assert len(forecast) == 4
        for point in forecast:
            assert point.predicted_value >= 0
            assert point.lower_bound >= 0
            assert point.upper_bound >= 0
        assert forecast[-1].predicted_value == 0

    def test_low_fit_confidence_is_floored(self):
        forecast = forecast_series(_points([100, 900, 100, 900, 100, 900]), 2, Period.MONTHLY)

        assert all(f.confidence >= 0.1 for f in forecast)
        assert all(f.upper_bound > f.lower_bound for f in forecast)

    def test_weekly_dates(self):
        points = [
            TrendPoint(date=date(2024, 1, 1 + 7 * i), value=100 + i, type=TrendType.SPENDING)
            for i in range(3)
        ]

        forecast = forecast_series(points, 2, Period.WEEKLY)

        assert [f.date for f in forecast] == [date(2024, 1, 22), date(2024, 1, 29)]


@pytest.mark.unit
class TestSeasonality:
    """Test seasonal factors."""

    def test_short_history_is_empty(self):
        seasonality = calculate_seasonality(_points([100] * 12))

        assert seasonality.has_seasonality is False
        assert seasonality.seasonal_factors == []
        assert seasonality.peak_periods == []

    @pytest.mark.asyncio
    async def test_december_peak(self, trend_service, ledger, make_transaction, filters):
        """24 months of 100 EUR spending with 400 EUR every December."""
        months = [(2022 + (5 + i) // 12, (5 + i) % 12 + 1) for i in range(24)]
        ledger.add_transactions([
            make_transaction(
                amount_cents=-40000 if month == 12 else -10000,
                date=datetime(year, month, 15)
            )
            for year, month in months
        ])

        analysis = await trend_service.get_trend_analysis("hh_test", filters, {"include_seasonality": True})
        seasonality = analysis.seasonality
        factors = {f.period: f.factor for f in seasonality.seasonal_factors}

        assert len(factors) == 12
        assert factors["December"] == pytest.approx(3.2)
        assert factors["March"] == pytest.approx(0.8)
        assert seasonality.has_seasonality is True
        assert len(seasonality.peak_periods) == 1
        assert seasonality.peak_periods[0].period == "December"
        assert seasonality.peak_periods[0].description == "220% above average"

    @pytest.mark.asyncio
    async def test_seasonality_needs_two_years(self, trend_service, ledger, make_transaction, filters):
        ledger.add_transactions([
            make_transaction(amount_cents=-10000, date=datetime(2024, month, 15))
            for month in range(1, 6)
        ])

        analysis = await trend_service.get_trend_analysis("hh_test", filters, {"include_seasonality": True})

        assert analysis.seasonality.has_seasonality is False
        assert analysis.seasonality.seasonal_factors == []
