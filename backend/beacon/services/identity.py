"""
Anonymous visitor identity.

The visitor hash is a one-way SHA-256 digest of request attributes plus a
salt that rotates daily. The same browser hashes to the same value until
the next rotation, after which it becomes a new anonymous visitor.
"""
import asyncio
import hashlib
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncContextManager, Awaitable, Callable, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.config import settings
from beacon.core.logging import get_logger
from beacon.repositories.setting import SettingRepository

logger = get_logger(__name__)

HASH_SEPARATOR = "|"


def derive_visitor_hash(
    ip: str,
    user_agent: str,
    screen_resolution: str,
    language: str,
    timezone_name: str,
    salt: str,
) -> str:
    """Return the 64-char hex visitor hash for one set of request attributes."""
    data = HASH_SEPARATOR.join(
        [ip, user_agent, screen_resolution, language, timezone_name, salt]
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def generate_salt() -> str:
    return f"{uuid4()}-{secrets.token_hex(8)}"


@dataclass(frozen=True)
class Salt:
    value: str
    version: int = 0
    rotated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SaltProvider:
    """
    Holds the process-wide current salt.

    The Salt value is immutable; rotation swaps the reference, so readers
    always see either the old or the new salt, never a mix.
    """

    def __init__(
        self,
        default: Optional[str] = None,
        setting_key: Optional[str] = None,
        refresh_interval: Optional[float] = None,
    ) -> None:
        self._current = Salt(default or settings.daily_salt_secret)
        self.setting_key = setting_key or settings.salt_setting_key
        self.refresh_interval = (
            settings.salt_refresh_seconds if refresh_interval is None else refresh_interval
        )
        self._checked_at: Optional[float] = None

    @property
    def current(self) -> Salt:
        return self._current

    def rotate(self, new_value: Optional[str] = None) -> Salt:
        """Replace the in-memory salt."""
        salt = Salt(new_value or generate_salt(), self._current.version + 1)
        self._current = salt
        logger.info("Visitor salt rotated", version=salt.version)
        return salt

    def hash_visitor(
        self,
        ip: str,
        user_agent: str,
        screen_resolution: str,
        language: str,
        timezone_name: str,
    ) -> str:
        return derive_visitor_hash(
            ip,
            user_agent,
            screen_resolution,
            language,
            timezone_name,
            self._current.value,
        )

    async def load(self, session: AsyncSession) -> Salt:
        """
        Adopt the persisted salt when it differs from the current one.

        Best-effort: if storage is unreachable the current salt stays.
        """
        self._checked_at = time.monotonic()
        try:
            async with session.begin_nested():
                value = await SettingRepository(session).get_value(self.setting_key)
        except SQLAlchemyError as e:
            logger.warning("Could not load persisted salt, keeping current", error=str(e))
            return self._current

        if value and value != self._current.value:
            self._current = Salt(value, self._current.version + 1)
            logger.info("Loaded persisted salt", version=self._current.version)
        return self._current

    async def refresh(self, session: AsyncSession) -> Salt:
        """
        Re-read the persisted salt at most once per refresh_interval.

        This is how a rotation done by the worker, or by another API
        process, reaches the process that hashes visitors.
        """
        checked_at = self._checked_at
        if checked_at is not None and time.monotonic() - checked_at < self.refresh_interval:
            return self._current
        return await self.load(session)

    async def rotate_and_persist(self, session: AsyncSession) -> Salt:
        """
        Generate a fresh salt, persist it, and swap it in.

        A persistence failure is logged; the in-memory rotation still applies.
        """
        new_value = generate_salt()
        try:
            async with session.begin_nested():
                await SettingRepository(session).set_value(self.setting_key, new_value)
        except SQLAlchemyError as e:
            logger.warning("Could not persist rotated salt, in-memory only", error=str(e))
        self._checked_at = time.monotonic()
        return self.rotate(new_value)


def seconds_until_next_rotation(now: Optional[datetime] = None) -> float:
    """Seconds from now to the next 00:00 UTC."""
    now = now or datetime.now(timezone.utc)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


async def run_daily_rotation(
    provider: SaltProvider,
    session_context: Callable[[], AsyncContextManager[AsyncSession]],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Rotate the salt at every 00:00 UTC until cancelled.

    API processes run this when no arq worker is there to run the cron job.
    """
    while True:
        await sleep(seconds_until_next_rotation())
        try:
            async with session_context() as session:
                await provider.rotate_and_persist(session)
        except SQLAlchemyError as e:
            logger.error("Scheduled salt rotation failed", error=str(e))


# Singleton instance
salt_provider = SaltProvider()
