"""
Session repository for data access operations.
"""
from datetime import datetime

from sqlalchemy import select

from beacon.models.session import AnalyticsSession
from beacon.repositories.base import BaseRepository


class SessionRepository(BaseRepository[AnalyticsSession]):
    """Repository for AnalyticsSession model operations."""

    model = AnalyticsSession

    async def get_for_update(self, session_id: str) -> AnalyticsSession | None:
        """
        Load a session row locked for the rest of the transaction.

        FOR UPDATE is dropped by dialects without row locks (SQLite).
        populate_existing refreshes an instance already in the identity map.
        """
        stmt = (
            select(AnalyticsSession)
            .where(AnalyticsSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_ids_started_between(
        self,
        site_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> list[str]:
        """Ids of the site's sessions started inside [from_date, to_date]."""
        stmt = (
            select(AnalyticsSession.id)
            .where(
                AnalyticsSession.site_id == site_id,
                AnalyticsSession.started_at >= from_date,
                AnalyticsSession.started_at <= to_date,
            )
            .order_by(AnalyticsSession.started_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
