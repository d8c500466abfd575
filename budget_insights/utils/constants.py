"""
Engine constants.
"""

from enum import Enum


class Period(str, Enum):
    """Time bucket granularity."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TrendType(str, Enum):
    """Series types available for trend analysis."""
    SPENDING = "spending"
    INCOME = "income"
    NET_WORTH = "net_worth"
    CATEGORY = "category"


class PatternType(str, Enum):
    """Temporal types of spending patterns."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    SEASONAL = "SEASONAL"


class TrendDirection(str, Enum):
    """Direction of a pattern over time."""
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class Sensitivity(str, Enum):
    """Anomaly detection sensitivity."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Severity(str, Enum):
    """Anomaly severity."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AnomalyType(str, Enum):
    """Kinds of detected anomalies."""
    UNUSUAL_SPENDING = "UNUSUAL_SPENDING"
    UNUSUAL_MERCHANT = "UNUSUAL_MERCHANT"
    UNUSUAL_CATEGORY = "UNUSUAL_CATEGORY"


class Priority(str, Enum):
    """Insight and recommendation priority."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class InsightType(str, Enum):
    """Types of persisted insights."""
    SPENDING_PATTERN = "SPENDING_PATTERN"
    ANOMALY_DETECTED = "ANOMALY_DETECTED"
    RECOMMENDATION = "RECOMMENDATION"


class RecommendationType(str, Enum):
    """Types of personalised recommendations."""
    BUDGET_OPTIMIZATION = "BUDGET_OPTIMIZATION"
    SAVINGS_OPPORTUNITY = "SAVINGS_OPPORTUNITY"
    SPENDING_REDUCTION = "SPENDING_REDUCTION"


class Effort(str, Enum):
    """Effort needed to act on a recommendation."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Timeframe(str, Enum):
    """When a recommendation pays off."""
    IMMEDIATE = "IMMEDIATE"
    SHORT_TERM = "SHORT_TERM"
    MEDIUM_TERM = "MEDIUM_TERM"
    LONG_TERM = "LONG_TERM"


class RefreshState(str, Enum):
    """Materialized view refresh states."""
    REFRESHING = "REFRESHING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Ordering helpers
PRIORITY_ORDER = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}

SEVERITY_ORDER = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

# Statistical thresholds
MIN_CONFIDENCE_SAMPLES = 2
MIN_REGRESSION_POINTS = 3
MIN_TREND_SAMPLES = 6
MIN_SEASONALITY_POINTS = 24
MIN_ANOMALY_SAMPLES = 3
CONFIDENCE_Z_SCORE = 1.96  # 95% interval
TREND_CHANGE_THRESHOLD_PERCENT = 10.0
SEASONALITY_CV_THRESHOLD = 0.15
SEASONAL_PEAK_FACTOR = 1.10
MAX_PEAK_PERIODS = 3
MIN_SEASONAL_FACTORS = 4
FORECAST_MIN_CONFIDENCE = 0.1
FORECAST_MAX_CONFIDENCE = 0.9

# Pattern lookback windows
DAILY_LOOKBACK_DAYS = 90
WEEKLY_LOOKBACK_DAYS = 84
MONTHLY_LOOKBACK_MONTHS = 12
SEASONAL_LOOKBACK_MONTHS = 24
TREND_LOOKBACK_MONTHS = 6

# Anomaly thresholds: standard deviations above the mean before a transaction is flagged
SENSITIVITY_STDDEV_MULTIPLIERS = {
    Sensitivity.HIGH: 1.0,
    Sensitivity.MEDIUM: 1.5,
    Sensitivity.LOW: 2.0,
}

# Recent spend at a never-seen merchant that is worth surfacing, in cents
NEW_MERCHANT_THRESHOLDS = {
    Sensitivity.HIGH: 500_000,
    Sensitivity.MEDIUM: 1_000_000,
    Sensitivity.LOW: 2_000_000,
}

HIGH_SEVERITY_DEVIATION_PERCENT = 200.0
MEDIUM_SEVERITY_DEVIATION_PERCENT = 100.0
HIGH_SEVERITY_AMOUNT_CENTS = 10_000_000
MEDIUM_SEVERITY_AMOUNT_CENTS = 5_000_000
CATEGORY_SPIKE_RATIO = 1.5

# Materialized views
VIEW_NAMES = (
    "daily_spending_summary",
    "monthly_category_breakdown",
    "account_balance_history",
    "net_worth_tracking",
    "merchant_spending_analysis",
    "category_trend_analysis",
    "cashflow_analysis",
)
REFRESH_LOCK_KEY_PREFIX = "refresh_lock"
REFRESH_STATUS_KEY_PREFIX = "refresh_status"
NEXT_REFRESH_SECONDS = 3600

# Recommendations
RECOMMENDATION_LOOKBACK_DAYS = 90
MAX_RECOMMENDATIONS = 10
TARGET_SAVINGS_RATE_PERCENT = 20.0
LOW_SAVINGS_RATE_PERCENT = 10.0
CATEGORY_CONCENTRATION_PERCENT = 30.0
SUBSCRIPTION_KEYWORDS = ("subscription", "monthly", "recurring", "membership")

UNCATEGORIZED = "uncategorized"
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

# Currency formatting
CURRENCY_DECIMALS = 2
AMOUNT_SCALE_FACTOR = 100  # Store amounts in cents
