"""
Goal evaluation API routes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.database import get_db_session
from beacon.core.exceptions import EventNotFoundError
from beacon.core.logging import get_logger
from beacon.routers.deps import get_notification_outbox
from beacon.schemas.goal import ConversionResponse, GoalEvaluateRequest, GoalEvaluateResponse
from beacon.services.goal_engine import GoalEngine
from beacon.services.outbox import NotificationOutbox

logger = get_logger(__name__)

router = APIRouter(prefix="/goals", tags=["goals"])


async def get_goal_engine(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    outbox: Annotated[NotificationOutbox, Depends(get_notification_outbox)],
) -> GoalEngine:
    """Dependency to get the goal engine."""
    return GoalEngine(session, outbox)


@router.post("/evaluate", response_model=GoalEvaluateResponse)
async def evaluate_goals(
    request: GoalEvaluateRequest,
    engine: Annotated[GoalEngine, Depends(get_goal_engine)],
) -> GoalEvaluateResponse:
    """
    Re-run goal evaluation for a stored event.

    Conversions already recorded for the event are not duplicated.
    """
    try:
        conversions = await engine.evaluate_event(request.event_id, request.site_id)
    except EventNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found",
        )

    logger.info(
        "Goals evaluated on request",
        event_id=request.event_id,
        conversions=len(conversions),
    )
    return GoalEvaluateResponse(
        conversions=[ConversionResponse.model_validate(c) for c in conversions],
    )
