"""
Database connection management with SQLAlchemy async.
Provides session dependency injection and connection pooling.
"""
import re
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends
from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from beacon.core.config import settings
from beacon.core.exceptions import StoreUnavailableError
from beacon.core.logging import get_logger

logger = get_logger(__name__)

# Flag to track if database is available
_db_available: bool = False

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only auto-increments INTEGER primary keys
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create async database engine with proper configuration."""
    database_url = database_url or settings.database_url
    # Convert postgresql:// to postgresql+asyncpg://
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    sanitized = re.sub(r":([^:@/]+)@", ":***@", database_url)
    logger.debug("Creating database engine", url=sanitized)

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=settings.database_echo)

    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        pool_pre_ping=True,  # Verify connections before use
    )


# Global engine and session factory
engine = create_engine()
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session with automatic cleanup.

    Raises StoreUnavailableError when the database failed to initialize,
    which the error middleware maps to a 503.
    """
    if not _db_available:
        raise StoreUnavailableError("Database unavailable")

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Type alias for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions outside of request context."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Initialize database tables.

    A failed connection is logged and leaves the service running with
    readiness reporting not_ready.
    """
    global _db_available
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        _db_available = True
        logger.info("Database initialized")
    except Exception as e:
        _db_available = False
        logger.warning("Database connection failed", error=str(e))


def is_db_available() -> bool:
    """Check if database is available."""
    return _db_available


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("Database connections closed")
