"""
Pydantic models for the insights engine.
"""
from .analytics import (
    AnomalyDetectionOptions,
    FinancialAnomaly,
    ForecastPoint,
    PatternAnalysisOptions,
    PeakPeriod,
    Recommendation,
    SeasonalFactor,
    SeasonalityData,
    SpendingPattern,
    TrendAnalysis,
    TrendOptions,
    TrendPoint,
)
from .base import HouseholdOwnedModel, IdentifiedModel, TimestampedModel
from .financial import (
    AmountRange,
    AnalyticsFilters,
    DateRange,
    Transaction,
    TransactionAggregate,
    TransactionFilters,
)
from .insights import Insight
from .views import MaterializedViewStatus, RefreshLease

__all__ = [
    # Base models
    "TimestampedModel",
    "IdentifiedModel",
    "HouseholdOwnedModel",
    # Ledger models
    "Transaction",
    "TransactionAggregate",
    "DateRange",
    "AmountRange",
    "TransactionFilters",
    "AnalyticsFilters",
    # Analytics models
    "SpendingPattern",
    "FinancialAnomaly",
    "Recommendation",
    "TrendPoint",
    "ForecastPoint",
    "SeasonalFactor",
    "PeakPeriod",
    "SeasonalityData",
    "TrendAnalysis",
    "PatternAnalysisOptions",
    "AnomalyDetectionOptions",
    "TrendOptions",
    # Insights
    "Insight",
    # Materialized views
    "MaterializedViewStatus",
    "RefreshLease",
]
