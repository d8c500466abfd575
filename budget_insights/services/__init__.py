"""
Analytics services.
"""
from .anomaly_detection import AnomalyDetectionService
from .insights import InsightsService
from .materialized_views import MaterializedViewService
from .recommendations import RecommendationService
from .spending_patterns import SpendingPatternService
from .trend_analytics import TrendAnalyticsService
from .view_scheduler import ViewRefreshScheduler

__all__ = [
    "AnomalyDetectionService",
    "InsightsService",
    "MaterializedViewService",
    "RecommendationService",
    "SpendingPatternService",
    "TrendAnalyticsService",
    "ViewRefreshScheduler",
]
