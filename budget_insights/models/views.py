"""
Materialized view status and refresh lease models.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..utils.constants import RefreshState
from .base import new_id

EPOCH = datetime(1970, 1, 1)


class MaterializedViewStatus(BaseModel):
    """Refresh state of one materialized view."""

    view_name: str
    last_refreshed: datetime = EPOCH
    next_refresh: datetime = EPOCH
    status: RefreshState = RefreshState.COMPLETED
    duration_ms: Optional[int] = Field(None, ge=0)
    error: Optional[str] = None

    @classmethod
    def never_refreshed(cls, view_name: str) -> "MaterializedViewStatus":
        """Optimistic default for a view that has no recorded refresh."""
        return cls(view_name=view_name, status=RefreshState.COMPLETED)


class RefreshLease(BaseModel):
    """Advisory ownership of a view refresh, stored in the cache."""

    view_name: str
    owner: str = Field(default_factory=new_id)
    acquired_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now
