"""
Goal and conversion repositories.
"""
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from beacon.models.goal import Goal, GoalConversion
from beacon.repositories.base import BaseRepository


class GoalRepository(BaseRepository[Goal]):
    """Repository for Goal model operations."""

    model = Goal

    async def get_active_for_site(self, site_id: str) -> list[Goal]:
        """Active goals of a site in creation order."""
        stmt = (
            select(Goal)
            .where(Goal.site_id == site_id, Goal.active.is_(True))
            .order_by(Goal.created_at, Goal.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class GoalConversionRepository(BaseRepository[GoalConversion]):
    """Repository for GoalConversion model operations."""

    model = GoalConversion

    async def exists_for_session(self, goal_id: UUID, session_id: str) -> bool:
        """Whether the goal already converted in this session."""
        stmt = select(func.count()).select_from(GoalConversion).where(
            GoalConversion.goal_id == goal_id,
            GoalConversion.session_id == session_id,
        )
        result = await self.session.execute(stmt)
        return (result.scalar() or 0) > 0

    async def record(self, values: dict[str, Any]) -> bool:
        """Append a conversion; a repeat for the same (goal, event) is a no-op."""
        return await self.insert_if_absent(values, ("goal_id", "event_id"))

    async def list_for_goal(self, goal_id: UUID) -> list[GoalConversion]:
        stmt = (
            select(GoalConversion)
            .where(GoalConversion.goal_id == goal_id)
            .order_by(GoalConversion.event_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
