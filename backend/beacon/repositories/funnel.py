"""
Funnel repository for data access operations.
"""
from uuid import UUID

from sqlalchemy import select

from beacon.models.funnel import Funnel
from beacon.repositories.base import BaseRepository


class FunnelRepository(BaseRepository[Funnel]):
    """Repository for Funnel model operations."""

    model = Funnel

    async def get_for_site(self, funnel_id: UUID, site_id: str) -> Funnel | None:
        """Get a funnel by id, scoped to its owning site."""
        stmt = select(Funnel).where(Funnel.id == funnel_id, Funnel.site_id == site_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
