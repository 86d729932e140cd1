"""
Visitor repository for data access operations.
"""
from sqlalchemy import select

from beacon.models.visitor import VisitorProfile
from beacon.repositories.base import BaseRepository


class VisitorRepository(BaseRepository[VisitorProfile]):
    """Repository for VisitorProfile model operations."""

    model = VisitorProfile

    async def get_by_visitor_id(
        self,
        site_id: str,
        visitor_id: str,
        *,
        for_update: bool = False,
    ) -> VisitorProfile | None:
        """Get a visitor profile by (site_id, visitor_id)."""
        stmt = select(VisitorProfile).where(
            VisitorProfile.site_id == site_id,
            VisitorProfile.visitor_id == visitor_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
