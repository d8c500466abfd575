"""
Insights orchestration.

Runs pattern detection, anomaly detection and recommendations concurrently,
maps their outputs to insights and persists the batch. Generation is
fail-fast: the first failure cancels the other detectors and nothing is
written.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import structlog

from ..config import Settings, get_settings
from ..infrastructure.interfaces import AnalyticsStore
from ..models.analytics import (
    AnomalyDetectionOptions,
    FinancialAnomaly,
    PatternAnalysisOptions,
    Recommendation,
    SpendingPattern,
)
from ..models.insights import Insight
from ..utils.constants import (
    DAY_NAMES,
    MONTH_NAMES,
    PRIORITY_ORDER,
    InsightType,
    PatternType,
    Priority,
    Severity,
)
from ..utils.exceptions import data_source_guard
from ..utils.formatting import format_cents
from ..utils.periods import Clock
from ..utils.validators import ensure_valid, validate_household_id
from .anomaly_detection import AnomalyDetectionService
from .recommendations import RecommendationService
from .spending_patterns import SpendingPatternService

logger = structlog.get_logger()

HIGH_PRIORITY_PATTERN_CONFIDENCE = 0.8
MEDIUM_PRIORITY_PATTERN_CONFIDENCE = 0.6

PATTERN_LABELS = {
    PatternType.DAILY: "Daily",
    PatternType.WEEKLY: "Weekly",
    PatternType.MONTHLY: "Monthly",
    PatternType.SEASONAL: "Seasonal",
}


class InsightsService:
    """Generates, lists and dismisses household insights."""

    def __init__(
        self,
        pattern_service: SpendingPatternService,
        anomaly_service: AnomalyDetectionService,
        recommendation_service: RecommendationService,
        store: AnalyticsStore,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None
    ):
        self.pattern_service = pattern_service
        self.anomaly_service = anomaly_service
        self.recommendation_service = recommendation_service
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock or datetime.utcnow

    async def generate_insights(
        self,
        household_id: str,
        pattern_options: Optional[Union[PatternAnalysisOptions, Dict[str, Any]]] = None,
        anomaly_options: Optional[Union[AnomalyDetectionOptions, Dict[str, Any]]] = None
    ) -> List[Insight]:
        """
        Regenerate the household's insights.

        Replaces the stored pattern set and every stored insight whose type
        appears in the new batch. Dismissed state is only changed through
        dismiss_insight.

        Raises:
            ValidationError: If the household ID or options are invalid
            DataSourceError: If a collaborator fails
        """
        household_id = ensure_valid(validate_household_id, household_id)
        if anomaly_options is None:
            anomaly_options = AnomalyDetectionOptions(
                lookback_days=self.settings.anomaly_lookback_days,
                recent_days=self.settings.anomaly_recent_days
            )

        logger.info("Generating insights", household_id=household_id)

        tasks = [
            asyncio.create_task(self.pattern_service.detect_patterns(household_id, pattern_options)),
            asyncio.create_task(self.anomaly_service.detect_anomalies(household_id, anomaly_options)),
            asyncio.create_task(self.recommendation_service.generate_recommendations(household_id)),
        ]

        try:
            patterns, anomalies, recommendations = await asyncio.gather(*tasks)
        except Exception as e:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.error("Insight generation failed", household_id=household_id, error=str(e))
            raise

        now = self._clock()
        valid_until = now + timedelta(days=self.settings.insight_validity_days)

        insights = [self._pattern_insight(household_id, p, now, valid_until) for p in patterns]
        insights.extend(self._anomaly_insight(household_id, a, now, valid_until) for a in anomalies)
        insights.extend(self._recommendation_insight(household_id, r, now, valid_until) for r in recommendations)

        types = []
        for insight in insights:
            if insight.type not in types:
                types.append(insight.type)

        async with data_source_guard("analytics_store", "replace_analysis", household_id=household_id):
            await self.store.replace_analysis(household_id, patterns, types, insights)

        logger.info(
            "Insights generated",
            household_id=household_id,
            patterns=len(patterns),
            anomalies=len(anomalies),
            recommendations=len(recommendations),
            insights=len(insights)
        )
        return insights

    async def get_insights(self, household_id: str) -> List[Insight]:
        """Active insights, highest priority first, newest first within a priority."""
        household_id = ensure_valid(validate_household_id, household_id)

        async with data_source_guard("analytics_store", "get_insights", household_id=household_id):
            stored = await self.store.get_insights(household_id)

        now = self._clock()
        active = [insight for insight in stored if insight.is_active(now)]
        active.sort(key=lambda i: (PRIORITY_ORDER[i.priority], i.created_at), reverse=True)
        return active

    async def dismiss_insight(self, insight_id: str) -> Insight:
        """
        Dismiss an insight.

        Raises:
            NotFoundError: If the insight doesn't exist
        """
        async with data_source_guard("analytics_store", "dismiss_insight", insight_id=insight_id):
            insight = await self.store.dismiss_insight(insight_id)

        logger.info("Insight dismissed", insight_id=insight_id, household_id=insight.household_id)
        return insight

    def _pattern_insight(
        self,
        household_id: str,
        pattern: SpendingPattern,
        now: datetime,
        valid_until: datetime
    ) -> Insight:
        category = pattern.category_name or "Uncategorized"
        return Insight(
            household_id=household_id,
            type=InsightType.SPENDING_PATTERN,
            title=f"{PATTERN_LABELS[pattern.type]} Spending Pattern in {category}",
            description=describe_pattern(pattern),
            data={"pattern": pattern.model_dump(mode="json")},
            priority=self._pattern_priority(pattern),
            is_actionable=True,
            created_at=now,
            valid_until=valid_until,
        )

    def _pattern_priority(self, pattern: SpendingPattern) -> Priority:
        if (
            pattern.confidence > HIGH_PRIORITY_PATTERN_CONFIDENCE
            and pattern.average_amount > self.settings.pattern_materiality_threshold_cents
        ):
            return Priority.HIGH
        if pattern.confidence > MEDIUM_PRIORITY_PATTERN_CONFIDENCE:
            return Priority.MEDIUM
        return Priority.LOW

    @staticmethod
    def _anomaly_insight(
        household_id: str,
        anomaly: FinancialAnomaly,
        now: datetime,
        valid_until: datetime
    ) -> Insight:
        return Insight(
            household_id=household_id,
            type=InsightType.ANOMALY_DETECTED,
            title=anomaly.title,
            description=anomaly.description,
            data={"anomaly": anomaly.model_dump(mode="json")},
            priority=Priority.HIGH if anomaly.severity == Severity.HIGH else Priority.MEDIUM,
            is_actionable=True,
            created_at=now,
            valid_until=valid_until,
        )

    @staticmethod
    def _recommendation_insight(
        household_id: str,
        recommendation: Recommendation,
        now: datetime,
        valid_until: datetime
    ) -> Insight:
        return Insight(
            household_id=household_id,
            type=InsightType.RECOMMENDATION,
            title=recommendation.title,
            description=recommendation.description,
            data={"recommendation": recommendation.model_dump(mode="json")},
            priority=recommendation.priority,
            is_actionable=True,
            created_at=now,
            valid_until=valid_until,
        )


def describe_pattern(pattern: SpendingPattern) -> str:
    category = pattern.category_name or "Uncategorized"
    amount = format_cents(pattern.average_amount)
    confidence = f"{round(pattern.confidence * 100)}% confidence"

    if pattern.type == PatternType.DAILY:
        return f"You typically spend {amount} daily on {category} ({confidence})"
    if pattern.type == PatternType.WEEKLY:
        day = DAY_NAMES[pattern.day_of_week] if pattern.day_of_week is not None else "week"
        return f"You typically spend {amount} on {day}s for {category} ({confidence})"
    if pattern.type == PatternType.MONTHLY:
        return f"You typically spend {amount} monthly on {category} ({confidence})"

    month = MONTH_NAMES[pattern.month - 1] if pattern.month else "season"
    return f"You typically spend more on {category} in {month} ({confidence})"
