"""
Outbound queues.

The goal engine never talks to the network; it hands GoalNotification
messages to an outbox, and ingestion hands new event ids to a goal
evaluation queue. Implementations either enqueue arq jobs or run the work
as local asyncio tasks.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import UUID

from arq.connections import ArqRedis
from pydantic import BaseModel, Field

from beacon.core.logging import get_logger
from beacon.services.notification_service import NotificationService, notification_service

logger = get_logger(__name__)


class GoalNotification(BaseModel):
    """A conversion that needs to be announced."""

    goal_id: UUID
    goal_name: str
    site_id: str
    session_id: str
    event_id: int
    revenue: Optional[float] = None
    webhook_url: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    converted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_targets(self) -> bool:
        return bool(self.webhook_url or self.slack_webhook_url)


class NotificationOutbox(Protocol):
    async def enqueue(self, notification: GoalNotification) -> None: ...


class GoalEvaluationQueue(Protocol):
    async def enqueue(self, event_id: int, site_id: str) -> None: ...


class ArqNotificationOutbox:
    """Queues delivery as an arq job."""

    def __init__(self, redis: ArqRedis) -> None:
        self.redis = redis

    async def enqueue(self, notification: GoalNotification) -> None:
        await self.redis.enqueue_job(
            "deliver_goal_notification_job",
            notification.model_dump(mode="json"),
        )
        logger.debug("Notification queued", goal_id=str(notification.goal_id))


class BackgroundNotificationOutbox:
    """
    Delivers in asyncio tasks on the running loop.

    Task references are held until completion so they are not garbage
    collected mid-flight.
    """

    def __init__(self, service: Optional[NotificationService] = None) -> None:
        self.service = service or notification_service
        self._tasks: set[asyncio.Task] = set()

    async def enqueue(self, notification: GoalNotification) -> None:
        task = asyncio.create_task(self._deliver(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, notification: GoalNotification) -> None:
        try:
            await self.service.deliver_goal_notification(notification)
        except Exception as e:
            logger.error(
                "Notification delivery crashed",
                goal_id=str(notification.goal_id),
                error=str(e),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight deliveries, e.g. on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class BufferedNotificationOutbox:
    """
    Holds notifications until the conversions behind them are committed.

    `flush` hands them to the real outbox; a failed hand-off is logged per
    notification.
    """

    def __init__(self) -> None:
        self.notifications: list[GoalNotification] = []

    async def enqueue(self, notification: GoalNotification) -> None:
        self.notifications.append(notification)

    async def flush(self, outbox: NotificationOutbox) -> None:
        notifications, self.notifications = self.notifications, []
        for notification in notifications:
            try:
                await outbox.enqueue(notification)
            except Exception as e:
                logger.warning(
                    "Failed to enqueue goal notification",
                    goal_id=str(notification.goal_id),
                    event_id=notification.event_id,
                    error=str(e),
                )


class ArqGoalEvaluationQueue:
    """Queues goal evaluation of a stored event as an arq job."""

    def __init__(self, redis: ArqRedis) -> None:
        self.redis = redis

    async def enqueue(self, event_id: int, site_id: str) -> None:
        await self.redis.enqueue_job("evaluate_goals_job", event_id, site_id)
