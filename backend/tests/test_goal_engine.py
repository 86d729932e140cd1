"""
Tests for the goal engine.
"""
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from fastapi import BackgroundTasks
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.exceptions import EventNotFoundError
from beacon.models import AnalyticsSession, EventType, Goal
from beacon.repositories.goal import GoalConversionRepository, GoalRepository
from beacon.services.goal_engine import (
    EVENT_LOOKUP_TRIES,
    AfterCommitGoalEvaluator,
    DeferredGoalEvaluationQueue,
    GoalEngine,
)

from conftest import BASE_TIME, minutes

PRICING_VISIT = [{"type": "page_visit", "match": "exact", "value": "/pricing"}]


class RecordingOutbox:
    def __init__(self):
        self.sent = []

    async def enqueue(self, notification):
        self.sent.append(notification)


class TestGoalEngine:
    """Tests for GoalEngine.evaluate_goals."""

    @pytest.fixture
    def outbox(self) -> RecordingOutbox:
        return RecordingOutbox()

    @pytest.fixture
    def engine(self, db_session, outbox) -> GoalEngine:
        return GoalEngine(db_session, outbox)

    async def test_matching_event_converts(self, engine, db_session, store_event, create_goal):
        goal = await create_goal(PRICING_VISIT)
        event = await store_event(path="/pricing", utm_source="ads", referrer_hostname="x.com")

        conversions = await engine.evaluate_goals(event)

        assert len(conversions) == 1
        assert conversions[0].goal_id == goal.id
        assert conversions[0].event_id == event.id
        assert conversions[0].conversion_path == "/pricing"

        stored = await GoalConversionRepository(db_session).list_for_goal(goal.id)
        assert len(stored) == 1
        assert stored[0].utm_source == "ads"
        assert stored[0].referrer_hostname == "x.com"

    async def test_non_matching_event_does_not_convert(self, engine, store_event, create_goal):
        await create_goal(PRICING_VISIT)
        event = await store_event(path="/about")

        assert await engine.evaluate_goals(event) == []

    async def test_once_per_session(self, engine, db_session, store_event, create_goal):
        goal = await create_goal(PRICING_VISIT)
        first = await store_event(path="/pricing")
        second = await store_event(path="/pricing", timestamp=minutes(1))

        assert len(await engine.evaluate_goals(first)) == 1
        assert await engine.evaluate_goals(second) == []
        assert await engine.evaluate_goals(first) == []

        stored = await GoalConversionRepository(db_session).list_for_goal(goal.id)
        assert len(stored) == 1

    async def test_every_time_is_idempotent_per_event(
        self, engine, db_session, store_event, create_goal
    ):
        goal = await create_goal(PRICING_VISIT, count_mode="every_time")
        first = await store_event(path="/pricing")
        second = await store_event(path="/pricing", timestamp=minutes(1))

        assert len(await engine.evaluate_goals(first)) == 1
        assert len(await engine.evaluate_goals(second)) == 1
        assert await engine.evaluate_goals(first) == []

        stored = await GoalConversionRepository(db_session).list_for_goal(goal.id)
        assert [c.event_id for c in stored] == [first.id, second.id]

    async def test_and_uses_session_history(self, engine, store_event, create_goal):
        await create_goal({
            "operator": "AND",
            "conditions": [
                {"type": "page_visit", "value": "/pricing"},
                {"type": "event", "event_name": "signup"},
            ],
        })
        await store_event(path="/pricing")
        signup = await store_event(
            event_type=EventType.CUSTOM, event_name="signup", timestamp=minutes(2)
        )

        assert len(await engine.evaluate_goals(signup)) == 1

    async def test_and_in_other_session_does_not_count(self, engine, store_event, create_goal):
        await create_goal({
            "operator": "AND",
            "conditions": [
                {"type": "page_visit", "value": "/pricing"},
                {"type": "event", "event_name": "signup"},
            ],
        })
        await store_event(path="/pricing", session_id="sess-other")
        signup = await store_event(
            event_type=EventType.CUSTOM, event_name="signup", timestamp=minutes(2)
        )

        assert await engine.evaluate_goals(signup) == []

    @pytest.mark.parametrize(
        "paths,expected",
        [
            (["/a", "/b", "/c"], 1),
            (["/c", "/b", "/a"], 0),
        ],
    )
    async def test_sequence_order(self, engine, store_event, create_goal, paths, expected):
        await create_goal({
            "operator": "SEQUENCE",
            "conditions": [
                {"type": "page_visit", "value": "/a"},
                {"type": "page_visit", "value": "/b"},
                {"type": "page_visit", "value": "/c"},
            ],
        })
        last = None
        for i, path in enumerate(paths):
            last = await store_event(path=path, timestamp=minutes(i))

        assert len(await engine.evaluate_goals(last)) == expected

    async def test_fixed_and_dynamic_revenue(self, engine, store_event, create_goal):
        await create_goal(
            [{"type": "event", "event_name": "purchase"}],
            name="Fixed",
            revenue_value=10.0,
        )
        await create_goal(
            [{"type": "event", "event_name": "purchase"}],
            name="Dynamic",
            revenue_value=10.0,
            use_dynamic_revenue=True,
            created_at=minutes(1),
        )
        event = await store_event(
            event_type=EventType.CUSTOM, event_name="purchase", revenue=49.5
        )

        conversions = await engine.evaluate_goals(event)

        assert [c.revenue for c in conversions] == [10.0, 49.5]

    async def test_entry_path_from_session(self, engine, db_session, store_event, create_goal):
        db_session.add(AnalyticsSession(
            id="sess-1",
            site_id="site-1",
            visitor_hash="a" * 64,
            started_at=BASE_TIME,
            ended_at=BASE_TIME,
            entry_path="/landing",
        ))
        await create_goal(PRICING_VISIT)
        event = await store_event(path="/pricing")

        conversions = await engine.evaluate_goals(event)

        assert conversions[0].entry_path == "/landing"

    async def test_inactive_and_foreign_goals_ignored(self, engine, store_event, create_goal):
        await create_goal(PRICING_VISIT, active=False)
        await create_goal(PRICING_VISIT, site_id="site-2")
        event = await store_event(path="/pricing")

        assert await engine.evaluate_goals(event) == []

    async def test_failing_goal_is_isolated(self, engine, store_event, create_goal):
        broken = await create_goal(PRICING_VISIT, name="Broken")
        healthy = await create_goal(PRICING_VISIT, name="Healthy", created_at=minutes(1))
        event = await store_event(path="/pricing")

        real_evaluate = GoalEngine._evaluate_goal

        async def fail_for_broken(self, goal, condition_set, event, history):
            if goal.id == broken.id:
                raise RuntimeError("boom")
            return await real_evaluate(self, goal, condition_set, event, history)

        with patch.object(GoalEngine, "_evaluate_goal", fail_for_broken):
            conversions = await engine.evaluate_goals(event)

        assert [c.goal_id for c in conversions] == [healthy.id]

    async def test_goal_load_failure_yields_nothing(self, engine, store_event):
        event = await store_event(path="/pricing")

        with patch.object(
            GoalRepository,
            "get_active_for_site",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down"))),
        ):
            assert await engine.evaluate_goals(event) == []

    async def test_notification_only_with_targets(self, engine, outbox, store_event, create_goal):
        await create_goal(PRICING_VISIT, name="Quiet")
        loud = await create_goal(
            PRICING_VISIT,
            name="Loud",
            notify_webhook="https://hooks.example.com/goal",
            created_at=minutes(1),
        )
        event = await store_event(path="/pricing")

        conversions = await engine.evaluate_goals(event)

        assert len(conversions) == 2
        assert len(outbox.sent) == 1
        notification = outbox.sent[0]
        assert notification.goal_id == loud.id
        assert notification.goal_name == "Loud"
        assert notification.webhook_url == "https://hooks.example.com/goal"
        assert notification.event_id == event.id

    async def test_outbox_failure_keeps_conversion(self, db_session, store_event, create_goal):
        outbox = AsyncMock()
        outbox.enqueue.side_effect = ConnectionError("redis down")
        engine = GoalEngine(db_session, outbox)
        await create_goal(PRICING_VISIT, notify_slack_webhook="https://hooks.slack.com/x")
        event = await store_event(path="/pricing")

        conversions = await engine.evaluate_goals(event)

        assert len(conversions) == 1
        outbox.enqueue.assert_awaited_once()


class TestEvaluateEvent:
    async def test_unknown_event_raises(self, db_session):
        with pytest.raises(EventNotFoundError):
            await GoalEngine(db_session).evaluate_event(999, "site-1")

    async def test_event_of_other_site_raises(self, db_session, store_event):
        event = await store_event(path="/pricing")

        with pytest.raises(EventNotFoundError):
            await GoalEngine(db_session).evaluate_event(event.id, "site-2")

    async def test_evaluates_stored_event(self, db_session, store_event, create_goal):
        await create_goal(PRICING_VISIT)
        event = await store_event(path="/pricing")

        conversions = await GoalEngine(db_session).evaluate_event(event.id, "site-1")

        assert len(conversions) == 1


class TestAfterCommitGoalEvaluator:
    """Tests for evaluation in a separate session after the ingest commit."""

    @pytest.fixture
    def commit(self, session_factory):
        async def _commit(*rows):
            async with session_factory() as session:
                session.add_all(rows)
                await session.commit()
            return rows

        return _commit

    @pytest.fixture
    def goal(self) -> Goal:
        return Goal(
            id=uuid4(),
            site_id="site-1",
            name="Pricing",
            goal_type="page_visit",
            conditions=PRICING_VISIT,
            count_mode="once_per_session",
            active=True,
            notify_webhook="https://example.com/hook",
        )

    async def test_converts_and_notifies(self, session_factory, commit, make_event, goal):
        event = make_event(path="/pricing")
        await commit(goal, event)
        outbox = RecordingOutbox()

        conversions = await AfterCommitGoalEvaluator(session_factory, outbox).evaluate(
            event.id, "site-1"
        )

        assert len(conversions) == 1
        assert [n.goal_id for n in outbox.sent] == [goal.id]
        async with session_factory() as session:
            stored = await GoalConversionRepository(session).list_for_goal(goal.id)
        assert len(stored) == 1

    async def test_failed_commit_announces_nothing(
        self, session_factory, commit, make_event, goal
    ):
        event = make_event(path="/pricing")
        await commit(goal, event)
        outbox = RecordingOutbox()
        evaluator = AfterCommitGoalEvaluator(session_factory, outbox)

        with patch.object(
            AsyncSession,
            "commit",
            AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))),
        ):
            conversions = await evaluator.evaluate(event.id, "site-1")

        assert conversions == []
        assert outbox.sent == []

    async def test_missing_event_is_retried_then_dropped(self, session_factory):
        evaluator = AfterCommitGoalEvaluator(session_factory, RecordingOutbox(), retry_delay=0)

        with patch.object(
            GoalEngine,
            "evaluate_event",
            AsyncMock(side_effect=EventNotFoundError("Event not found")),
        ) as evaluate:
            assert await evaluator.evaluate(12345, "site-1") == []

        assert evaluate.await_count == EVENT_LOOKUP_TRIES


class TestDeferredGoalEvaluationQueue:
    @pytest.fixture
    def evaluator(self) -> MagicMock:
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(return_value=[])
        return evaluator

    async def test_enqueue_does_not_evaluate(self, evaluator):
        queue = DeferredGoalEvaluationQueue(evaluator)

        await queue.enqueue(7, "site-1")

        evaluator.evaluate.assert_not_awaited()
        assert queue.pending == [(7, "site-1")]

    async def test_schedule_hands_pending_to_task_runner(self, evaluator):
        queue = DeferredGoalEvaluationQueue(evaluator)
        await queue.enqueue(7, "site-1")
        tasks = BackgroundTasks()

        queue.schedule(tasks.add_task)
        await tasks()

        assert queue.pending == []
        evaluator.evaluate.assert_awaited_once_with(7, "site-1")
