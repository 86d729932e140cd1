"""
Funnel statistics API routes.
"""
from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.database import get_db_session
from beacon.core.exceptions import FunnelNotFoundError
from beacon.core.logging import get_logger
from beacon.schemas.funnel import (
    PERIOD_DAYS,
    FunnelStatsResponse,
    FunnelStepResult,
    FunnelSummary,
    Period,
)
from beacon.services.funnel_engine import FunnelEngine

logger = get_logger(__name__)

router = APIRouter(prefix="/funnels", tags=["funnels"])


async def get_funnel_engine(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> FunnelEngine:
    """Dependency to get the funnel engine."""
    return FunnelEngine(session)


@router.get("/{funnel_id}/stats", response_model=FunnelStatsResponse)
async def get_funnel_stats(
    funnel_id: UUID,
    engine: Annotated[FunnelEngine, Depends(get_funnel_engine)],
    site_id: str = Query(..., min_length=1),
    period: Period = Query("last_30_days"),
) -> FunnelStatsResponse:
    """
    Per-step counts for sessions started in the chosen period.

    The period ends now; unknown funnels return 404.
    """
    to_date = datetime.now(timezone.utc)
    from_date = to_date - timedelta(days=PERIOD_DAYS[period])

    try:
        stats = await engine.compute_funnel_stats(funnel_id, site_id, from_date, to_date)
    except FunnelNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Funnel not found",
        )

    return FunnelStatsResponse(
        funnel=FunnelSummary.model_validate(stats.funnel),
        steps=[
            FunnelStepResult(
                name=step.name,
                count=step.count,
                dropoff=step.dropoff,
                conversion_rate=step.conversion_rate,
            )
            for step in stats.steps
        ],
    )
