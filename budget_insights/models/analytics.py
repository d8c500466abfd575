"""
Analytics models: patterns, anomalies, recommendations, trends and options.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.constants import (
    AnomalyType,
    Effort,
    PatternType,
    Period,
    Priority,
    RecommendationType,
    Sensitivity,
    Severity,
    Timeframe,
    TrendDirection,
    TrendType,
)
from ..utils.validators import validate_confidence, validate_min_frequency
from .base import HouseholdOwnedModel, IdentifiedModel


class SpendingPattern(HouseholdOwnedModel):
    """Recurring spending behaviour detected for a household."""

    type: PatternType
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    merchant: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0 is Monday")
    hour_of_day: Optional[int] = Field(None, ge=0, le=23)
    month: Optional[int] = Field(None, ge=1, le=12)
    average_amount: float = Field(..., ge=0, description="Mean bucket sum in cents")
    frequency: int = Field(..., ge=0, description="Number of distinct buckets observed")
    confidence: float = Field(..., ge=0, le=1)
    trend: TrendDirection = TrendDirection.STABLE
    last_updated: datetime = Field(default_factory=datetime.utcnow)


class FinancialAnomaly(IdentifiedModel):
    """A statistically unusual transaction, merchant or category."""

    type: AnomalyType
    title: str
    description: str
    severity: Severity
    transaction_id: Optional[str] = None
    amount: int = Field(..., description="Flagged amount in cents")
    expected_amount: Optional[float] = None
    deviation: float = Field(..., description="Percentage above the expected amount")
    confidence: float = Field(..., ge=0, le=1)
    reason: str
    detected_at: datetime = Field(default_factory=datetime.utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)


class Recommendation(BaseModel):
    """Personalised budgeting recommendation."""

    type: RecommendationType
    title: str
    description: str
    priority: Priority
    potential_savings: Optional[int] = Field(None, ge=0, description="Cents")
    effort: Effort = Effort.MEDIUM
    timeframe: Timeframe = Timeframe.SHORT_TERM
    action_steps: List[str] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)


class TrendPoint(BaseModel):
    date: date
    value: float
    type: TrendType
    category: Optional[str] = None


class ForecastPoint(BaseModel):
    date: date
    predicted_value: float = Field(..., ge=0)
    lower_bound: float = Field(..., ge=0)
    upper_bound: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)


class SeasonalFactor(BaseModel):
    period: str
    factor: float


class PeakPeriod(BaseModel):
    period: str
    factor: float
    description: str


class SeasonalityData(BaseModel):
    """Seasonal factors; empty when there is not enough history."""

    has_seasonality: bool = False
    seasonal_factors: List[SeasonalFactor] = Field(default_factory=list)
    peak_periods: List[PeakPeriod] = Field(default_factory=list)


class TrendAnalysis(BaseModel):
    period: Period
    trend_type: TrendType
    trends: List[TrendPoint] = Field(default_factory=list)
    seasonality: Optional[SeasonalityData] = None
    forecast: Optional[List[ForecastPoint]] = None


class PatternAnalysisOptions(BaseModel):
    """Options for spending pattern analysis."""

    min_frequency: int = Field(default=3, description="Minimum distinct buckets")
    min_confidence: float = Field(default=0.5, description="Minimum confidence in [0, 1]")
    include_seasonality: bool = True
    include_trends: bool = True

    @field_validator("min_frequency", mode="before")
    @classmethod
    def check_min_frequency(cls, v):
        return validate_min_frequency(v)

    @field_validator("min_confidence", mode="before")
    @classmethod
    def check_min_confidence(cls, v):
        return validate_confidence(v)


class AnomalyDetectionOptions(BaseModel):
    """Options for anomaly detection."""

    sensitivity: Sensitivity = Sensitivity.MEDIUM
    lookback_days: int = Field(default=180, ge=7, le=730)
    recent_days: int = Field(default=30, ge=1, le=180)
    include_merchant_anomalies: bool = True
    include_category_anomalies: bool = True
    min_deviation: float = Field(default=50.0, ge=0, description="Minimum category deviation in percent")


class TrendOptions(BaseModel):
    """Options for trend analysis."""

    period: Period = Period.MONTHLY
    trend_type: TrendType = TrendType.SPENDING
    include_seasonality: bool = False
    include_forecast: bool = False
    forecast_periods: int = Field(default=6, ge=1, le=60)
