"""
Base models for all Pydantic models in the engine.
"""
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    """Generate a new string identifier."""
    return str(uuid4())


class TimestampedModel(BaseModel):
    """Base model with automatic creation timestamp."""

    created_at: datetime = Field(default_factory=datetime.utcnow)


class IdentifiedModel(BaseModel):
    """Base model with string UUID identification."""

    id: str = Field(default_factory=new_id)


class HouseholdOwnedModel(IdentifiedModel):
    """Base model for derived records owned by a household."""

    household_id: str = Field(..., min_length=1, description="Household that owns this record")
