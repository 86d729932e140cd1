"""
Base repository with common CRUD operations.
Implements the Repository pattern for data access abstraction.
"""
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository providing common database operations.

    Subclasses should set the `model` class attribute to the SQLAlchemy model.
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Get a single record by its primary key."""
        return await self.session.get(self.model, id)

    async def insert_if_absent(
        self,
        values: dict[str, Any],
        conflict_columns: Sequence[str],
    ) -> bool:
        """
        INSERT .. ON CONFLICT DO NOTHING.

        Returns True when this call inserted the row, False when a row with
        the same conflict key already existed (including one written by a
        concurrent transaction).
        """
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(self.model)
        elif dialect == "sqlite":
            stmt = sqlite.insert(self.model)
        else:
            raise NotImplementedError(f"insert_if_absent not supported on {dialect}")

        stmt = stmt.values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_columns),
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def count(self) -> int:
        """Count total records."""
        stmt = select(func.count()).select_from(self.model)
        result = await self.session.execute(stmt)
        return result.scalar() or 0
