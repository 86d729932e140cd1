"""
Test suite configuration.

Every test gets a fresh in-memory SQLite database. aiosqlite's implicit
transaction handling is switched off so SAVEPOINTs behave as on
PostgreSQL.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.pop("REDIS_URL", None)
os.environ.pop("SENTRY_DSN", None)

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any, AsyncGenerator, Callable  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from beacon.core.database import Base, get_db_session  # noqa: E402
from beacon.main import create_app  # noqa: E402
from beacon.routers.deps import get_session_factory  # noqa: E402
from beacon.models import AnalyticsEvent, EventType, Funnel, Goal  # noqa: E402

BASE_TIME = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with all tables."""
    test_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    @event.listens_for(test_engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session bound to the test database."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def client() -> TestClient:
    """Synchronous client running the full application lifespan."""
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
async def async_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async client whose requests and background tasks use the test database."""
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client


@pytest.fixture
def make_event() -> Callable[..., AnalyticsEvent]:
    """Build an unsaved event; keyword arguments override the defaults."""

    def _make(**overrides: Any) -> AnalyticsEvent:
        values: dict[str, Any] = {
            "site_id": "site-1",
            "session_id": "sess-1",
            "visitor_hash": "a" * 64,
            "event_type": EventType.PAGEVIEW,
            "path": "/",
            "event_data": {},
            "custom_props": {},
            "timestamp": BASE_TIME,
        }
        values.update(overrides)
        return AnalyticsEvent(**values)

    return _make


@pytest.fixture
def store_event(db_session: AsyncSession, make_event):
    """Persist an event and return it with its id."""

    async def _store(**overrides: Any) -> AnalyticsEvent:
        row = make_event(**overrides)
        db_session.add(row)
        await db_session.flush()
        return row

    return _store


@pytest.fixture
def create_goal(db_session: AsyncSession):
    async def _create(conditions: Any, **overrides: Any) -> Goal:
        values: dict[str, Any] = {
            "id": uuid4(),
            "site_id": "site-1",
            "name": "Signup",
            "goal_type": "custom",
            "conditions": conditions,
            "count_mode": "once_per_session",
            "active": True,
            "created_at": BASE_TIME,
        }
        values.update(overrides)
        goal = Goal(**values)
        db_session.add(goal)
        await db_session.flush()
        return goal

    return _create


@pytest.fixture
def create_funnel(db_session: AsyncSession):
    async def _create(steps: list[dict[str, Any]], **overrides: Any) -> Funnel:
        values: dict[str, Any] = {
            "id": uuid4(),
            "site_id": "site-1",
            "name": "Checkout",
            "steps": steps,
            "window_hours": 168,
        }
        values.update(overrides)
        funnel = Funnel(**values)
        db_session.add(funnel)
        await db_session.flush()
        return funnel

    return _create


def minutes(n: int) -> datetime:
    return BASE_TIME + timedelta(minutes=n)
