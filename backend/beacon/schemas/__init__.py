"""
Pydantic schemas package.
"""
from beacon.schemas.event import ClientContext, IncomingEvent, IngestResult
from beacon.schemas.funnel import (
    FunnelStatsResponse,
    FunnelStepResult,
    FunnelSummary,
    Period,
)
from beacon.schemas.goal import (
    ConversionResponse,
    GoalEvaluateRequest,
    GoalEvaluateResponse,
)

__all__ = [
    # Collection
    "IncomingEvent",
    "ClientContext",
    "IngestResult",
    # Funnels
    "Period",
    "FunnelSummary",
    "FunnelStepResult",
    "FunnelStatsResponse",
    # Goals
    "GoalEvaluateRequest",
    "GoalEvaluateResponse",
    "ConversionResponse",
]
