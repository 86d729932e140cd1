"""
Goal Engine - turns matching events into recorded conversions.

Each active goal of the event's site is evaluated in its own savepoint, so
one broken goal can not block the others or the ingestion transaction.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beacon.core.database import async_session_factory
from beacon.core.exceptions import EventNotFoundError
from beacon.core.logging import get_logger
from beacon.models.event import AnalyticsEvent
from beacon.models.goal import Goal, GoalConversion
from beacon.repositories.event import EventRepository
from beacon.repositories.goal import GoalConversionRepository, GoalRepository
from beacon.repositories.session import SessionRepository
from beacon.services.conditions import ConditionSet, load_condition_set
from beacon.services.outbox import (
    BufferedNotificationOutbox,
    GoalNotification,
    NotificationOutbox,
)

logger = get_logger(__name__)

# Attempts to find an event whose ingesting transaction may not be committed yet
EVENT_LOOKUP_TRIES = 3


class GoalEngine:
    """
    Evaluates the goals of one site against incoming events.

    Args:
        session: Database session shared with the caller's transaction
        outbox: Where conversion notifications are handed off
    """

    def __init__(self, session: AsyncSession, outbox: Optional[NotificationOutbox] = None) -> None:
        self.session = session
        self.outbox = outbox
        self.goals = GoalRepository(session)
        self.conversions = GoalConversionRepository(session)
        self.events = EventRepository(session)
        self.sessions = SessionRepository(session)

    async def evaluate_event(self, event_id: int, site_id: str) -> list[GoalConversion]:
        """Evaluate a stored event, looked up by id within its site."""
        event = await self.events.get_for_site(event_id, site_id)
        if event is None:
            raise EventNotFoundError("Event not found", event_id=event_id, site_id=site_id)
        return await self.evaluate_goals(event)

    async def evaluate_goals(self, event: AnalyticsEvent) -> list[GoalConversion]:
        """
        Evaluate every active goal of the event's site.

        Returns:
            The conversions recorded by this call
        """
        try:
            goals = await self.goals.get_active_for_site(event.site_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load goals", site_id=event.site_id, error=str(e))
            return []

        if not goals:
            return []

        history: Optional[list[Any]] = None
        recorded: list[GoalConversion] = []

        for goal in goals:
            condition_set = load_condition_set(goal.conditions)
            try:
                async with self.session.begin_nested():
                    if condition_set.needs_history and history is None:
                        history = await self._session_history(event)
                    conversion = await self._evaluate_goal(goal, condition_set, event, history)
            except Exception as e:
                logger.error(
                    "Goal evaluation failed",
                    goal_id=str(goal.id),
                    session_id=event.session_id,
                    event_id=event.id,
                    error=str(e),
                )
                continue

            if conversion is None:
                continue

            recorded.append(conversion)
            await self._notify(goal, conversion)

        if recorded:
            logger.info(
                "Goals converted",
                site_id=event.site_id,
                event_id=event.id,
                count=len(recorded),
            )
        return recorded

    async def _session_history(self, event: AnalyticsEvent) -> list[Any]:
        """Session events oldest first, always including the current one."""
        history: list[Any] = list(await self.events.list_for_session(event.session_id))
        if event.id is None or all(e.id != event.id for e in history):
            history.append(event)
        return history

    async def _evaluate_goal(
        self,
        goal: Goal,
        condition_set: ConditionSet,
        event: AnalyticsEvent,
        history: Optional[list[Any]],
    ) -> Optional[GoalConversion]:
        if goal.counts_once_per_session and await self.conversions.exists_for_session(
            goal.id, event.session_id
        ):
            return None

        if not condition_set.evaluate(event, history):
            return None

        values = await self._conversion_values(goal, event)
        if not await self.conversions.record(values):
            logger.debug(
                "Conversion already recorded",
                goal_id=str(goal.id),
                event_id=event.id,
            )
            return None
        return GoalConversion(**values)

    async def _conversion_values(self, goal: Goal, event: AnalyticsEvent) -> dict[str, Any]:
        revenue = event.revenue if goal.use_dynamic_revenue else goal.revenue_value
        session_row = await self.sessions.get_by_id(event.session_id)

        return {
            "id": uuid4(),
            "goal_id": goal.id,
            "site_id": event.site_id,
            "session_id": event.session_id,
            "visitor_hash": event.visitor_hash,
            "event_id": event.id,
            "referrer_hostname": event.referrer_hostname,
            "utm_source": event.utm_source,
            "utm_medium": event.utm_medium,
            "utm_campaign": event.utm_campaign,
            "entry_path": session_row.entry_path if session_row else event.path,
            "conversion_path": event.path,
            "revenue": revenue,
            "converted_at": datetime.now(timezone.utc),
        }

    async def _notify(self, goal: Goal, conversion: GoalConversion) -> None:
        if self.outbox is None or not (goal.notify_webhook or goal.notify_slack_webhook):
            return

        notification = GoalNotification(
            goal_id=goal.id,
            goal_name=goal.name,
            site_id=conversion.site_id,
            session_id=conversion.session_id,
            event_id=conversion.event_id,
            revenue=conversion.revenue,
            webhook_url=goal.notify_webhook,
            slack_webhook_url=goal.notify_slack_webhook,
            converted_at=conversion.converted_at,
        )
        try:
            await self.outbox.enqueue(notification)
        except Exception as e:
            logger.warning(
                "Failed to enqueue goal notification",
                goal_id=str(goal.id),
                event_id=conversion.event_id,
                error=str(e),
            )


class AfterCommitGoalEvaluator:
    """
    Evaluates a committed event's goals in a session of its own.

    Used without Redis. Notifications are held back until the conversions
    are committed, so a rolled back conversion is never announced.

    Args:
        session_factory: Opens the evaluation session
        outbox: Receives notifications after commit
        retry_delay: Base backoff while the event is not yet visible
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        outbox: Optional[NotificationOutbox] = None,
        retry_delay: float = 0.5,
    ) -> None:
        self.session_factory = session_factory or async_session_factory
        self.outbox = outbox
        self.retry_delay = retry_delay

    async def evaluate(self, event_id: int, site_id: str) -> list[GoalConversion]:
        for attempt in range(1, EVENT_LOOKUP_TRIES + 1):
            buffer = BufferedNotificationOutbox()
            try:
                async with self.session_factory() as session:
                    conversions = await GoalEngine(session, buffer).evaluate_event(
                        event_id, site_id
                    )
                    await session.commit()
            except EventNotFoundError:
                if attempt == EVENT_LOOKUP_TRIES:
                    logger.warning("Event not found for goal evaluation", event_id=event_id)
                    return []
                await asyncio.sleep(self.retry_delay * attempt)
                continue
            except Exception as e:
                logger.error(
                    "Background goal evaluation failed",
                    event_id=event_id,
                    site_id=site_id,
                    error=str(e),
                )
                return []

            if self.outbox is not None:
                await buffer.flush(self.outbox)
            return conversions
        return []


class DeferredGoalEvaluationQueue:
    """
    Remembers the events ingested in a request.

    Nothing is evaluated during ingestion; once the request transaction has
    committed, `schedule` hands each event to the evaluator.
    """

    def __init__(self, evaluator: AfterCommitGoalEvaluator) -> None:
        self.evaluator = evaluator
        self.pending: list[tuple[int, str]] = []

    async def enqueue(self, event_id: int, site_id: str) -> None:
        self.pending.append((event_id, site_id))

    def schedule(self, add_task: Callable[..., Any]) -> None:
        """Pass every pending evaluation to a task runner such as BackgroundTasks.add_task."""
        pending, self.pending = self.pending, []
        for event_id, site_id in pending:
            add_task(self.evaluator.evaluate, event_id, site_id)
