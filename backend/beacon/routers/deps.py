"""
Shared router dependencies.
"""
from typing import Annotated, Optional

from arq.connections import ArqRedis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beacon.core.database import async_session_factory
from beacon.services.goal_engine import AfterCommitGoalEvaluator, DeferredGoalEvaluationQueue
from beacon.services.outbox import (
    ArqGoalEvaluationQueue,
    ArqNotificationOutbox,
    BackgroundNotificationOutbox,
    GoalEvaluationQueue,
    NotificationOutbox,
)


def get_arq_pool(request: Request) -> Optional[ArqRedis]:
    """The arq pool opened at startup, or None when Redis is not configured."""
    return getattr(request.app.state, "arq_pool", None)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for sessions that outlive the request, e.g. background evaluation."""
    return async_session_factory


def get_notification_outbox(
    request: Request,
    pool: Annotated[Optional[ArqRedis], Depends(get_arq_pool)],
) -> NotificationOutbox:
    if pool is not None:
        return ArqNotificationOutbox(pool)

    outbox = getattr(request.app.state, "notification_outbox", None)
    if outbox is None:
        outbox = BackgroundNotificationOutbox()
        request.app.state.notification_outbox = outbox
    return outbox


def get_goal_queue(
    pool: Annotated[Optional[ArqRedis], Depends(get_arq_pool)],
    outbox: Annotated[NotificationOutbox, Depends(get_notification_outbox)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> GoalEvaluationQueue:
    """Worker-side evaluation when Redis is available, after commit otherwise."""
    if pool is not None:
        return ArqGoalEvaluationQueue(pool)
    return DeferredGoalEvaluationQueue(AfterCommitGoalEvaluator(session_factory, outbox))
