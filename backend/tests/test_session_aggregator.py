"""
Tests for the session aggregator.
"""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from beacon.core.exceptions import StoreUnavailableError
from beacon.models import AnalyticsSession, EventType
from beacon.repositories.event import EventRepository
from beacon.repositories.session import SessionRepository
from beacon.services.session_aggregator import SessionAggregator, as_utc

from conftest import minutes


class TestSessionAggregator:
    """Tests for SessionAggregator.upsert_session."""

    @pytest.fixture
    def aggregator(self, db_session) -> SessionAggregator:
        return SessionAggregator(db_session)

    async def test_first_event_creates_session(self, aggregator, db_session, make_event):
        event = make_event(
            path="/landing",
            referrer_hostname="google.com",
            utm_source="newsletter",
            device_type="desktop",
            engaged_time_ms=1500,
        )

        result = await aggregator.upsert_session(event)

        assert result.is_entry is True
        assert result.is_bounce is True

        row = await db_session.get(AnalyticsSession, "sess-1")
        assert row.pageviews == 1
        assert row.events_count == 1
        assert row.is_bounce is True
        assert row.entry_path == "/landing"
        assert row.exit_path == "/landing"
        assert row.duration_ms == 0
        assert row.engaged_time_ms == 1500
        assert row.referrer_hostname == "google.com"
        assert row.utm_source == "newsletter"
        assert row.device_type == "desktop"

    async def test_first_non_pageview_has_no_pageviews(self, aggregator, db_session, make_event):
        await aggregator.upsert_session(make_event(event_type=EventType.CUSTOM, event_name="x"))

        row = await db_session.get(AnalyticsSession, "sess-1")
        assert row.pageviews == 0
        assert row.events_count == 1

    async def test_second_pageview_clears_bounce(self, aggregator, db_session, make_event):
        await aggregator.upsert_session(make_event(path="/a"))

        result = await aggregator.upsert_session(make_event(path="/b", timestamp=minutes(3)))

        assert result.is_entry is False
        assert result.is_bounce is False

        row = await SessionRepository(db_session).get_for_update("sess-1")
        assert row.pageviews == 2
        assert row.events_count == 2
        assert row.entry_path == "/a"
        assert row.exit_path == "/b"
        assert row.duration_ms == 180_000
        assert as_utc(row.ended_at) == minutes(3)

    async def test_custom_events_keep_bounce(self, aggregator, db_session, make_event):
        await aggregator.upsert_session(make_event())

        result = await aggregator.upsert_session(
            make_event(event_type=EventType.CUSTOM, event_name="click", timestamp=minutes(1))
        )

        assert result.is_bounce is True
        row = await SessionRepository(db_session).get_for_update("sess-1")
        assert row.pageviews == 1
        assert row.events_count == 2

    async def test_pageviews_never_exceed_events(self, aggregator, db_session, make_event):
        kinds = [EventType.PAGEVIEW, EventType.CUSTOM, EventType.PAGEVIEW, EventType.SCROLL_DEPTH]
        for i, kind in enumerate(kinds):
            await aggregator.upsert_session(make_event(event_type=kind, timestamp=minutes(i)))

        row = await SessionRepository(db_session).get_for_update("sess-1")
        assert row.pageviews == 2
        assert row.events_count == 4
        assert row.pageviews <= row.events_count
        assert row.is_bounce is False

    async def test_accumulates_revenue_and_merges_props(self, aggregator, db_session, make_event):
        await aggregator.upsert_session(
            make_event(revenue=10.0, engaged_time_ms=100, custom_props={"plan": "free", "ab": "A"})
        )
        await aggregator.upsert_session(
            make_event(
                revenue=5.5,
                engaged_time_ms=250,
                custom_props={"plan": "pro"},
                timestamp=minutes(1),
            )
        )

        row = await SessionRepository(db_session).get_for_update("sess-1")
        assert row.total_revenue == pytest.approx(15.5)
        assert row.engaged_time_ms == 350
        assert row.custom_props == {"plan": "pro", "ab": "A"}

    async def test_lost_insert_race_becomes_update(self, aggregator, db_session, make_event):
        """A session created by a concurrent writer is updated, not duplicated."""
        await aggregator.upsert_session(make_event(path="/a"))

        # Simulate the first read missing the row created concurrently
        real_get = SessionRepository.get_for_update
        calls = {"n": 0}

        async def stale_then_real(self, session_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_get(self, session_id)

        with patch.object(SessionRepository, "get_for_update", stale_then_real):
            result = await aggregator.upsert_session(make_event(path="/b", timestamp=minutes(1)))

        assert result.is_entry is False
        assert result.is_bounce is False
        assert await SessionRepository(db_session).count() == 1

        row = await SessionRepository(db_session).get_for_update("sess-1")
        assert row.pageviews == 2

    async def test_clears_previous_exit_flags(self, aggregator, db_session, store_event, make_event):
        await aggregator.upsert_session(make_event())
        first = await store_event(is_exit=True)

        await aggregator.upsert_session(make_event(timestamp=minutes(1)))

        await db_session.refresh(first)
        assert first.is_exit is False

    async def test_exit_flag_failure_is_not_raised(self, aggregator, db_session, make_event):
        await aggregator.upsert_session(make_event())

        with patch.object(
            EventRepository,
            "clear_exit_flags",
            AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("locked"))),
        ):
            result = await aggregator.upsert_session(make_event(timestamp=minutes(1)))

        assert result.is_entry is False
        row = await SessionRepository(db_session).get_for_update("sess-1")
        assert row.events_count == 2

    async def test_store_failure_propagates(self, aggregator, make_event):
        with patch.object(
            SessionRepository,
            "get_for_update",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down"))),
        ):
            with pytest.raises(StoreUnavailableError):
                await aggregator.upsert_session(make_event())

    async def test_sessions_are_independent(self, aggregator, db_session, make_event):
        await aggregator.upsert_session(make_event(session_id="s-a"))
        result = await aggregator.upsert_session(make_event(session_id="s-b"))

        assert result.is_entry is True
        assert await SessionRepository(db_session).count() == 2
