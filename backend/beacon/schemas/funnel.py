"""
Funnel statistics schemas.
"""
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

Period = Literal["last_7_days", "last_30_days", "last_90_days"]

PERIOD_DAYS: dict[str, int] = {
    "last_7_days": 7,
    "last_30_days": 30,
    "last_90_days": 90,
}


class FunnelStepResult(BaseModel):
    """One step of a computed funnel."""

    name: str
    count: int
    dropoff: int
    conversion_rate: float


class FunnelSummary(BaseModel):
    id: UUID
    site_id: str
    name: str
    description: Optional[str] = None
    window_hours: int

    model_config = ConfigDict(from_attributes=True)


class FunnelStatsResponse(BaseModel):
    """Schema for funnel stats API responses."""

    funnel: FunnelSummary
    steps: list[FunnelStepResult]
