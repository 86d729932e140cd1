"""
Tests for the funnel engine.
"""
from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from beacon.core.exceptions import FunnelNotFoundError
from beacon.models import AnalyticsEvent, AnalyticsSession, EventType
from beacon.repositories.event import EventRepository
from beacon.services.funnel_engine import FunnelEngine, conversion_rate, step_name

from conftest import BASE_TIME, minutes

CHECKOUT_STEPS = [
    {"name": "Pricing", "type": "page_visit", "value": "/pricing"},
    {"name": "Signup", "type": "page_visit", "value": "/signup"},
    {"name": "Purchase", "type": "event", "event_name": "purchase"},
]

FROM_DATE = BASE_TIME - timedelta(days=1)
TO_DATE = BASE_TIME + timedelta(days=1)


@pytest.fixture
def seed_session(db_session):
    """Store a session with one event per (event_type, path, name) tuple."""

    async def _seed(session_id, events, site_id="site-1", started_at=BASE_TIME):
        db_session.add(AnalyticsSession(
            id=session_id,
            site_id=site_id,
            visitor_hash="b" * 64,
            started_at=started_at,
            ended_at=started_at,
        ))
        for i, (event_type, path, name) in enumerate(events):
            db_session.add(AnalyticsEvent(
                site_id=site_id,
                session_id=session_id,
                visitor_hash="b" * 64,
                event_type=event_type,
                event_name=name,
                path=path,
                timestamp=started_at + timedelta(seconds=i),
            ))
        await db_session.flush()

    return _seed


def visit(path):
    return (EventType.PAGEVIEW, path, None)


def custom(name):
    return (EventType.CUSTOM, "/", name)


@pytest.fixture
async def checkout_cohort(seed_session):
    """100 sessions: 40 see pricing, 10 of them sign up, 2 of those purchase."""
    for i in range(100):
        events = [visit("/")]
        if i < 40:
            events.append(visit("/pricing"))
        if i < 10:
            events.append(visit("/signup"))
        if i < 2:
            events.append(custom("purchase"))
        await seed_session(f"s-{i:03d}", events, started_at=minutes(i))


class TestFunnelEngine:
    """Tests for FunnelEngine.compute_funnel_stats."""

    async def test_checkout_scenario(self, db_session, create_funnel, checkout_cohort):
        funnel = await create_funnel(CHECKOUT_STEPS)

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert [(s.name, s.count, s.dropoff, s.conversion_rate) for s in stats.steps] == [
            ("Pricing", 40, 60, 40.0),
            ("Signup", 10, 30, 25.0),
            ("Purchase", 2, 8, 20.0),
        ]

    async def test_small_batches_give_same_result(
        self, db_session, create_funnel, checkout_cohort
    ):
        funnel = await create_funnel(CHECKOUT_STEPS)

        stats = await FunnelEngine(db_session, batch_size=7).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert [s.count for s in stats.steps] == [40, 10, 2]

    async def test_counts_never_increase(self, db_session, create_funnel, seed_session):
        await seed_session("s-1", [visit("/signup")])
        await seed_session("s-2", [visit("/pricing"), visit("/signup")])
        funnel = await create_funnel(CHECKOUT_STEPS[:2])

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        counts = [s.count for s in stats.steps]
        assert counts == [1, 1]
        assert counts == sorted(counts, reverse=True)

    async def test_step_order_inside_session_ignored(
        self, db_session, create_funnel, seed_session
    ):
        """Steps narrow the cohort; event order inside a session is not checked."""
        await seed_session("s-1", [visit("/signup"), visit("/pricing")])
        funnel = await create_funnel(CHECKOUT_STEPS[:2])

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert [s.count for s in stats.steps] == [1, 1]

    async def test_sessions_outside_range_excluded(
        self, db_session, create_funnel, seed_session
    ):
        await seed_session("s-in", [visit("/pricing")])
        await seed_session("s-old", [visit("/pricing")], started_at=BASE_TIME - timedelta(days=10))
        await seed_session("s-other-site", [visit("/pricing")], site_id="site-2")
        funnel = await create_funnel(CHECKOUT_STEPS[:1])

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert stats.steps[0].count == 1
        assert stats.steps[0].conversion_rate == 100.0

    async def test_empty_cohort_gives_zero_steps(self, db_session, create_funnel):
        funnel = await create_funnel(CHECKOUT_STEPS)

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert [(s.name, s.count, s.dropoff, s.conversion_rate) for s in stats.steps] == [
            ("Pricing", 0, 0, 0.0),
            ("Signup", 0, 0, 0.0),
            ("Purchase", 0, 0, 0.0),
        ]

    async def test_funnel_without_steps(self, db_session, create_funnel, seed_session):
        await seed_session("s-1", [visit("/pricing")])
        funnel = await create_funnel([])

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert stats.steps == []
        assert stats.funnel.id == funnel.id

    async def test_unnamed_steps_get_positional_names(
        self, db_session, create_funnel, seed_session
    ):
        await seed_session("s-1", [visit("/pricing")])
        funnel = await create_funnel([{"type": "page_visit", "value": "/pricing"}])

        stats = await FunnelEngine(db_session).compute_funnel_stats(
            funnel.id, "site-1", FROM_DATE, TO_DATE
        )

        assert stats.steps[0].name == "Step 1"

    async def test_unknown_funnel(self, db_session):
        with pytest.raises(FunnelNotFoundError):
            await FunnelEngine(db_session).compute_funnel_stats(
                uuid4(), "site-1", FROM_DATE, TO_DATE
            )

    async def test_funnel_of_other_site(self, db_session, create_funnel):
        funnel = await create_funnel(CHECKOUT_STEPS, site_id="site-2")

        with pytest.raises(FunnelNotFoundError):
            await FunnelEngine(db_session).compute_funnel_stats(
                funnel.id, "site-1", FROM_DATE, TO_DATE
            )

    async def test_failed_batch_contributes_nothing(
        self, db_session, create_funnel, checkout_cohort
    ):
        funnel = await create_funnel(CHECKOUT_STEPS[:1])
        real_list = EventRepository.list_for_sessions
        calls = {"n": 0}

        async def fail_first_batch(self, site_id, session_ids):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("SELECT", {}, Exception("timeout"))
            return await real_list(self, site_id, session_ids)

        with patch.object(EventRepository, "list_for_sessions", fail_first_batch):
            stats = await FunnelEngine(db_session, batch_size=20).compute_funnel_stats(
                funnel.id, "site-1", FROM_DATE, TO_DATE
            )

        # Sessions s-000..s-019 were in the failed batch
        assert stats.steps[0].count == 20
        assert stats.steps[0].dropoff == 80


class TestHelpers:
    @pytest.mark.parametrize(
        "count,previous,expected",
        [
            (40, 100, 40.0),
            (1, 3, 33.3),
            (2, 3, 66.7),
            (1, 8, 12.5),
            (0, 10, 0.0),
            (5, 0, 0.0),
        ],
    )
    def test_conversion_rate(self, count, previous, expected):
        assert conversion_rate(count, previous) == expected

    def test_step_name(self):
        assert step_name({"name": "Cart"}, 0) == "Cart"
        assert step_name({"type": "page_visit"}, 2) == "Step 3"
        assert step_name("junk", 0) == "Step 1"
