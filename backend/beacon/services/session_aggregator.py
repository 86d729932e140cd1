"""
Session aggregation - folds each event into its live session row.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.exceptions import StoreUnavailableError
from beacon.core.logging import get_logger
from beacon.models.event import EventType
from beacon.models.session import AnalyticsSession
from beacon.repositories.event import EventRepository
from beacon.repositories.session import SessionRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionUpsertResult:
    is_entry: bool
    is_bounce: bool


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((as_utc(end) - as_utc(start)).total_seconds() * 1000))


class SessionAggregator:
    """
    Per-session upsert state machine: absent -> active -> active.

    `event` is any object exposing the AnalyticsEvent attributes.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.sessions = SessionRepository(session)
        self.events = EventRepository(session)

    async def upsert_session(self, event: Any) -> SessionUpsertResult:
        """
        Create or update the session for `event.session_id`.

        Store errors propagate as StoreUnavailableError: losing the session
        update would silently lose the event.
        """
        try:
            existing = await self.sessions.get_for_update(event.session_id)
            if existing is None:
                if await self.sessions.insert_if_absent(
                    self._seed_values(event),
                    ("id",),
                ):
                    logger.debug("Session started", session_id=event.session_id)
                    return SessionUpsertResult(is_entry=True, is_bounce=True)

                # A concurrent event created the session first; apply ours as an update
                logger.debug("Session insert lost race, updating", session_id=event.session_id)
                existing = await self.sessions.get_for_update(event.session_id)
                if existing is None:
                    raise StoreUnavailableError(
                        "Session vanished after insert conflict",
                        session_id=event.session_id,
                    )

            is_bounce = await self._apply_event(existing, event)
        except SQLAlchemyError as e:
            logger.error("Session upsert failed", session_id=event.session_id, error=str(e))
            raise StoreUnavailableError("Session upsert failed", session_id=event.session_id) from e

        await self._clear_previous_exit_flags(event.session_id)
        return SessionUpsertResult(is_entry=False, is_bounce=is_bounce)

    def _seed_values(self, event: Any) -> dict[str, Any]:
        return {
            "id": event.session_id,
            "site_id": event.site_id,
            "visitor_hash": event.visitor_hash,
            "started_at": event.timestamp,
            "ended_at": event.timestamp,
            "duration_ms": 0,
            "engaged_time_ms": event.engaged_time_ms or 0,
            "pageviews": 1 if event.event_type == EventType.PAGEVIEW else 0,
            "events_count": 1,
            "is_bounce": True,
            "entry_path": event.path,
            "exit_path": event.path,
            "referrer_hostname": event.referrer_hostname,
            "utm_source": event.utm_source,
            "utm_medium": event.utm_medium,
            "utm_campaign": event.utm_campaign,
            "country_code": event.country_code,
            "city": event.city,
            "device_type": event.device_type,
            "browser": event.browser,
            "os": event.os,
            "total_revenue": event.revenue or 0.0,
            "custom_props": dict(event.custom_props or {}),
        }

    async def _apply_event(self, record: AnalyticsSession, event: Any) -> bool:
        if event.event_type == EventType.PAGEVIEW:
            record.pageviews = (record.pageviews or 0) + 1
        record.events_count = (record.events_count or 0) + 1

        record.ended_at = event.timestamp
        record.duration_ms = elapsed_ms(record.started_at, event.timestamp)

        record.is_bounce = record.pageviews <= 1
        record.engaged_time_ms = (record.engaged_time_ms or 0) + (event.engaged_time_ms or 0)
        record.total_revenue = (record.total_revenue or 0.0) + (event.revenue or 0.0)
        record.exit_path = event.path

        if event.custom_props:
            record.custom_props = {**(record.custom_props or {}), **event.custom_props}

        await self.session.flush()
        return record.is_bounce

    async def _clear_previous_exit_flags(self, session_id: str) -> None:
        """
        Un-mark earlier exit events so the incoming event can carry the flag.

        Runs as its own statement after the session update and is
        best-effort: a failure leaves a stale exit flag which the next
        event of the session corrects.
        """
        try:
            async with self.session.begin_nested():
                cleared = await self.events.clear_exit_flags(session_id)
            logger.debug("Cleared exit flags", session_id=session_id, count=cleared)
        except SQLAlchemyError as e:
            logger.warning("Failed to clear exit flags", session_id=session_id, error=str(e))
