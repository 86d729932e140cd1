"""
Visitor aggregation - lifetime totals per anonymous visitor.
"""
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.exceptions import StoreUnavailableError
from beacon.core.logging import get_logger
from beacon.models.event import EventType
from beacon.models.visitor import VisitorProfile
from beacon.repositories.visitor import VisitorRepository

logger = get_logger(__name__)

# Columns refreshed from every event
LAST_KNOWN_FIELDS = {
    "last_country_code": "country_code",
    "last_city": "city",
    "last_device_type": "device_type",
    "last_browser": "browser",
    "last_os": "os",
    "last_language": "language",
    "last_screen_width": "screen_width",
    "last_screen_height": "screen_height",
}


class VisitorAggregator:
    """Upserts the VisitorProfile keyed by (site_id, visitor_hash)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.visitors = VisitorRepository(session)

    async def upsert_visitor(self, event: Any, is_new_session: bool) -> None:
        """
        Fold one event into the visitor's totals.

        is_new_session comes from the session aggregator's is_entry and
        decides whether total_sessions grows.
        """
        try:
            visitor = await self.visitors.get_by_visitor_id(
                event.site_id, event.visitor_hash, for_update=True
            )
            if visitor is None:
                if await self.visitors.insert_if_absent(
                    self._seed_values(event),
                    ("site_id", "visitor_id"),
                ):
                    logger.debug("New visitor", site_id=event.site_id)
                    return

                visitor = await self.visitors.get_by_visitor_id(
                    event.site_id, event.visitor_hash, for_update=True
                )
                if visitor is None:
                    raise StoreUnavailableError(
                        "Visitor vanished after insert conflict",
                        site_id=event.site_id,
                    )

            await self._apply_event(visitor, event, is_new_session)
        except SQLAlchemyError as e:
            logger.error("Visitor upsert failed", site_id=event.site_id, error=str(e))
            raise StoreUnavailableError("Visitor upsert failed", site_id=event.site_id) from e

    def _seed_values(self, event: Any) -> dict[str, Any]:
        values = {
            "site_id": event.site_id,
            "visitor_id": event.visitor_hash,
            "first_seen_at": event.timestamp,
            "last_seen_at": event.timestamp,
            "total_sessions": 1,
            "total_pageviews": 1 if event.event_type == EventType.PAGEVIEW else 0,
            "total_events": 1,
            "total_revenue": event.revenue or 0.0,
            "total_engaged_time_ms": event.engaged_time_ms or 0,
            "first_referrer_hostname": event.referrer_hostname,
            "first_utm_source": event.utm_source,
            "first_utm_medium": event.utm_medium,
            "first_utm_campaign": event.utm_campaign,
            "first_entry_path": event.path,
            "custom_props": dict(event.custom_props or {}),
        }
        for column, source in LAST_KNOWN_FIELDS.items():
            values[column] = getattr(event, source, None)
        return values

    async def _apply_event(
        self,
        visitor: VisitorProfile,
        event: Any,
        is_new_session: bool,
    ) -> None:
        visitor.total_events = (visitor.total_events or 0) + 1
        if event.event_type == EventType.PAGEVIEW:
            visitor.total_pageviews = (visitor.total_pageviews or 0) + 1
        if is_new_session:
            visitor.total_sessions = (visitor.total_sessions or 0) + 1
        visitor.total_revenue = (visitor.total_revenue or 0.0) + (event.revenue or 0.0)
        visitor.total_engaged_time_ms = (
            (visitor.total_engaged_time_ms or 0) + (event.engaged_time_ms or 0)
        )

        visitor.last_seen_at = event.timestamp
        for column, source in LAST_KNOWN_FIELDS.items():
            setattr(visitor, column, getattr(event, source, None))

        if event.custom_props:
            visitor.custom_props = {**(visitor.custom_props or {}), **event.custom_props}

        await self.session.flush()
