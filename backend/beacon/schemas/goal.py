"""
Goal evaluation schemas.
"""
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class GoalEvaluateRequest(BaseModel):
    """Re-run goal evaluation for a stored event."""

    event_id: int = Field(..., ge=1)
    site_id: str = Field(..., min_length=1, max_length=64)


class ConversionResponse(BaseModel):
    goal_id: UUID
    session_id: str
    event_id: int
    revenue: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class GoalEvaluateResponse(BaseModel):
    success: bool = True
    conversions: list[ConversionResponse] = Field(default_factory=list)
