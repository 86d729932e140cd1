"""
Tests for the visitor aggregator.
"""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from beacon.core.exceptions import StoreUnavailableError
from beacon.models import EventType
from beacon.repositories.visitor import VisitorRepository
from beacon.services.visitor_aggregator import VisitorAggregator

from conftest import minutes

VISITOR = "a" * 64


class TestVisitorAggregator:
    """Tests for VisitorAggregator.upsert_visitor."""

    @pytest.fixture
    def aggregator(self, db_session) -> VisitorAggregator:
        return VisitorAggregator(db_session)

    @pytest.fixture
    def repo(self, db_session) -> VisitorRepository:
        return VisitorRepository(db_session)

    async def test_first_event_creates_profile(self, aggregator, repo, make_event):
        await aggregator.upsert_visitor(
            make_event(
                path="/landing",
                referrer_hostname="google.com",
                utm_campaign="spring",
                browser="Firefox",
                revenue=12.0,
            ),
            is_new_session=True,
        )

        visitor = await repo.get_by_visitor_id("site-1", VISITOR)
        assert visitor.total_sessions == 1
        assert visitor.total_pageviews == 1
        assert visitor.total_events == 1
        assert visitor.total_revenue == pytest.approx(12.0)
        assert visitor.first_entry_path == "/landing"
        assert visitor.first_referrer_hostname == "google.com"
        assert visitor.first_utm_campaign == "spring"
        assert visitor.last_browser == "Firefox"

    async def test_updates_totals(self, aggregator, repo, make_event):
        await aggregator.upsert_visitor(make_event(), is_new_session=True)
        await aggregator.upsert_visitor(
            make_event(event_type=EventType.CUSTOM, event_name="cta", timestamp=minutes(1)),
            is_new_session=False,
        )
        await aggregator.upsert_visitor(
            make_event(session_id="sess-2", engaged_time_ms=900, timestamp=minutes(60)),
            is_new_session=True,
        )

        visitor = await repo.get_by_visitor_id("site-1", VISITOR, for_update=True)
        assert visitor.total_events == 3
        assert visitor.total_pageviews == 2
        assert visitor.total_sessions == 2
        assert visitor.total_engaged_time_ms == 900

    async def test_first_touch_frozen_last_known_overwritten(self, aggregator, repo, make_event):
        await aggregator.upsert_visitor(
            make_event(referrer_hostname="google.com", utm_source="ads", country_code="DE"),
            is_new_session=True,
        )
        await aggregator.upsert_visitor(
            make_event(
                session_id="sess-2",
                referrer_hostname="bing.com",
                utm_source="mail",
                country_code="FR",
                timestamp=minutes(30),
            ),
            is_new_session=True,
        )

        visitor = await repo.get_by_visitor_id("site-1", VISITOR, for_update=True)
        assert visitor.first_referrer_hostname == "google.com"
        assert visitor.first_utm_source == "ads"
        assert visitor.last_country_code == "FR"

    async def test_custom_props_new_keys_win(self, aggregator, repo, make_event):
        await aggregator.upsert_visitor(
            make_event(custom_props={"tier": "free", "ref": "x"}), is_new_session=True
        )
        await aggregator.upsert_visitor(
            make_event(custom_props={"tier": "pro"}, timestamp=minutes(1)), is_new_session=False
        )

        visitor = await repo.get_by_visitor_id("site-1", VISITOR, for_update=True)
        assert visitor.custom_props == {"tier": "pro", "ref": "x"}

    async def test_same_hash_on_other_site_is_other_visitor(self, aggregator, repo, make_event):
        await aggregator.upsert_visitor(make_event(), is_new_session=True)
        await aggregator.upsert_visitor(make_event(site_id="site-2"), is_new_session=True)

        assert await repo.count() == 2

    async def test_lost_insert_race_becomes_update(self, aggregator, repo, make_event):
        await aggregator.upsert_visitor(make_event(), is_new_session=True)

        real_get = VisitorRepository.get_by_visitor_id
        calls = {"n": 0}

        async def stale_then_real(self, site_id, visitor_id, *, for_update=False):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_get(self, site_id, visitor_id, for_update=for_update)

        with patch.object(VisitorRepository, "get_by_visitor_id", stale_then_real):
            await aggregator.upsert_visitor(make_event(timestamp=minutes(1)), is_new_session=False)

        assert await repo.count() == 1
        visitor = await repo.get_by_visitor_id("site-1", VISITOR, for_update=True)
        assert visitor.total_events == 2

    async def test_store_failure_propagates(self, aggregator, make_event):
        with patch.object(
            VisitorRepository,
            "get_by_visitor_id",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down"))),
        ):
            with pytest.raises(StoreUnavailableError):
                await aggregator.upsert_visitor(make_event(), is_new_session=True)
