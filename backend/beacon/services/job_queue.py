"""
ARQ Job Queue Service - Async Redis-based job queue for background tasks.

Provides:
- Goal evaluation of stored events
- Conversion notification delivery
- Daily visitor salt rotation
"""
from typing import Any, Optional

from arq import Retry, create_pool, cron
from arq.connections import ArqRedis, RedisSettings

from beacon.core.config import settings
from beacon.core.database import get_db_context, init_db
from beacon.core.exceptions import EventNotFoundError
from beacon.core.logging import configure_logging, get_logger
from beacon.services.goal_engine import EVENT_LOOKUP_TRIES, GoalEngine
from beacon.services.identity import salt_provider
from beacon.services.notification_service import notification_service
from beacon.services.outbox import (
    ArqNotificationOutbox,
    BufferedNotificationOutbox,
    GoalNotification,
)

logger = get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from config."""
    redis_url = str(settings.redis_url) if settings.redis_url else "redis://localhost:6379"
    return RedisSettings.from_dsn(redis_url)


# ============================================
# JOB FUNCTIONS
# ============================================

async def evaluate_goals_job(
    ctx: dict,
    event_id: int,
    site_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Evaluate all active goals of a stored event.

    Args:
        ctx: ARQ context with Redis connection
        event_id: Id of the stored event
        site_id: Owning site; looked up from the event when omitted
    """
    redis: ArqRedis = ctx["redis"]
    buffer = BufferedNotificationOutbox()

    async with get_db_context() as session:
        engine = GoalEngine(session, buffer)
        try:
            if site_id is None:
                event = await engine.events.get_by_id(event_id)
                if event is None:
                    raise EventNotFoundError("Event not found", event_id=event_id)
                conversions = await engine.evaluate_goals(event)
            else:
                conversions = await engine.evaluate_event(event_id, site_id)
        except EventNotFoundError:
            # The ingesting transaction may not have committed yet
            job_try = ctx.get("job_try", 1)
            if job_try < EVENT_LOOKUP_TRIES:
                raise Retry(defer=job_try * 2)
            logger.warning("Event not found for goal evaluation", event_id=event_id)
            return {"error": "Event not found"}

    # Announce only what the context manager committed
    await buffer.flush(ArqNotificationOutbox(redis))
    return {"conversions": len(conversions)}


async def deliver_goal_notification_job(
    ctx: dict,
    notification: dict[str, Any],
) -> dict[str, Any]:
    """Background job to deliver one conversion notification."""
    message = GoalNotification.model_validate(notification)
    delivered = await notification_service.deliver_goal_notification(message)
    return {"sent": [channel for channel, ok in delivered.items() if ok]}


async def rotate_salt_job(ctx: dict) -> dict[str, Any]:
    """
    Daily job replacing the visitor salt.

    Runs at 00:00 UTC; visitors hashed after it are new anonymous visitors.
    """
    async with get_db_context() as session:
        salt = await salt_provider.rotate_and_persist(session)

    return {"version": salt.version}


async def startup(ctx: dict) -> None:
    """Worker startup: logging, database and the persisted salt."""
    configure_logging()
    await init_db()
    async with get_db_context() as session:
        salt = await salt_provider.load(session)
    logger.info("Worker started", salt_version=salt.version)


# ============================================
# WORKER SETTINGS
# ============================================

class WorkerSettings:
    """ARQ worker configuration."""

    functions = [
        evaluate_goals_job,
        deliver_goal_notification_job,
        rotate_salt_job,
    ]

    cron_jobs = [
        # Salt rotation at midnight UTC
        cron(rotate_salt_job, hour={0}, minute={0}),
    ]

    on_startup = startup

    redis_settings = get_redis_settings()

    # Worker settings
    max_jobs = 10
    job_timeout = 60
    keep_result = 3600  # 1 hour
    retry_jobs = True
    max_tries = EVENT_LOOKUP_TRIES


async def create_queue_pool() -> ArqRedis:
    """Create ARQ Redis connection pool."""
    return await create_pool(get_redis_settings())
