"""
Public event collection endpoint called by the browser tracker.
"""
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.database import get_db_session
from beacon.routers.deps import get_goal_queue
from beacon.schemas.event import ClientContext, IncomingEvent, IngestResult
from beacon.services.enrichment import client_ip
from beacon.services.goal_engine import DeferredGoalEvaluationQueue
from beacon.services.ingestion import IngestionService
from beacon.services.outbox import GoalEvaluationQueue

router = APIRouter(tags=["collect"])


async def get_ingestion_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    goal_queue: Annotated[GoalEvaluationQueue, Depends(get_goal_queue)],
) -> IngestionService:
    """Dependency to get the ingestion service."""
    return IngestionService(session, goal_queue)


def get_client_context(request: Request) -> ClientContext:
    """Client attributes from proxy and CDN headers."""
    headers = request.headers
    return ClientContext(
        ip=client_ip(
            headers.get("x-forwarded-for"),
            headers.get("x-real-ip"),
            request.client.host if request.client else None,
        ),
        user_agent=headers.get("user-agent", ""),
        country_code=headers.get("cf-ipcountry") or headers.get("x-vercel-ip-country"),
        city=headers.get("x-vercel-ip-city"),
    )


@router.post("/collect", status_code=status.HTTP_202_ACCEPTED, response_model=IngestResult)
async def collect(
    payload: IncomingEvent,
    client: Annotated[ClientContext, Depends(get_client_context)],
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    background_tasks: BackgroundTasks,
) -> IngestResult:
    """
    Accept one tracker event.

    Bot traffic is acknowledged with 202 and accepted=false so trackers
    can not tell they were filtered. Without Redis, goals are evaluated
    after the response, once the event is committed.
    """
    result = await service.ingest(payload, client)

    goal_queue = service.goal_queue
    if isinstance(goal_queue, DeferredGoalEvaluationQueue) and goal_queue.pending:
        await service.session.commit()
        goal_queue.schedule(background_tasks.add_task)
    return result
