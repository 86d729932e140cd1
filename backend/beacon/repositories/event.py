"""
Event repository for data access operations.
"""
from typing import Sequence

from sqlalchemy import select, update

from beacon.models.event import AnalyticsEvent
from beacon.repositories.base import BaseRepository


class EventRepository(BaseRepository[AnalyticsEvent]):
    """Repository for AnalyticsEvent model operations."""

    model = AnalyticsEvent

    async def get_for_site(self, event_id: int, site_id: str) -> AnalyticsEvent | None:
        """Get an event by id, scoped to its site."""
        stmt = select(AnalyticsEvent).where(
            AnalyticsEvent.id == event_id,
            AnalyticsEvent.site_id == site_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_session(self, session_id: str) -> list[AnalyticsEvent]:
        """All events of a session, oldest first."""
        stmt = (
            select(AnalyticsEvent)
            .where(AnalyticsEvent.session_id == session_id)
            .order_by(AnalyticsEvent.timestamp, AnalyticsEvent.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_sessions(
        self,
        site_id: str,
        session_ids: Sequence[str],
    ) -> list[AnalyticsEvent]:
        """Events for a batch of sessions of one site."""
        if not session_ids:
            return []
        stmt = select(AnalyticsEvent).where(
            AnalyticsEvent.site_id == site_id,
            AnalyticsEvent.session_id.in_(session_ids),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def clear_exit_flags(self, session_id: str) -> int:
        """Un-mark every event of the session currently flagged as exit."""
        stmt = (
            update(AnalyticsEvent)
            .where(
                AnalyticsEvent.session_id == session_id,
                AnalyticsEvent.is_exit.is_(True),
            )
            .values(is_exit=False)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
