"""
Persisted insight model.
"""
from datetime import datetime
from typing import Any, Dict

from pydantic import Field

from ..utils.constants import InsightType, Priority
from .base import HouseholdOwnedModel, TimestampedModel


class Insight(HouseholdOwnedModel, TimestampedModel):
    """A user-facing insight derived from patterns, anomalies or recommendations."""

    type: InsightType
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., max_length=1000)
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    is_actionable: bool = True
    is_dismissed: bool = False
    valid_until: datetime

    def is_active(self, now: datetime) -> bool:
        """Check whether the insight should still be shown."""
        return not self.is_dismissed and self.valid_until > now
