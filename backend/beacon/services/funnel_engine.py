"""
Funnel Engine - step-by-step session counts over a date range.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.config import settings
from beacon.core.exceptions import FunnelNotFoundError
from beacon.core.logging import get_logger
from beacon.models.funnel import Funnel
from beacon.repositories.event import EventRepository
from beacon.repositories.funnel import FunnelRepository
from beacon.repositories.session import SessionRepository
from beacon.services.conditions import Condition, matches, parse_condition

logger = get_logger(__name__)


@dataclass(frozen=True)
class FunnelStepStats:
    name: str
    count: int
    dropoff: int
    conversion_rate: float


@dataclass
class FunnelStats:
    funnel: Funnel
    steps: list[FunnelStepStats] = field(default_factory=list)


def conversion_rate(count: int, previous: int) -> float:
    """Percentage with one decimal, halves rounded up; 0 when previous is 0."""
    if previous <= 0:
        return 0.0
    return math.floor(count / previous * 1000 + 0.5) / 10


def step_name(raw: object, index: int) -> str:
    if isinstance(raw, dict) and raw.get("name"):
        return str(raw["name"])
    return f"Step {index + 1}"


class FunnelEngine:
    """
    Computes funnel stats by narrowing a session cohort step by step.

    A session survives a step when any of its events matches the step;
    survivors form the candidate set for the next step.
    """

    def __init__(self, session: AsyncSession, batch_size: Optional[int] = None) -> None:
        self.session = session
        self.batch_size = batch_size or settings.funnel_batch_size
        self.funnels = FunnelRepository(session)
        self.sessions = SessionRepository(session)
        self.events = EventRepository(session)

    async def compute_funnel_stats(
        self,
        funnel_id: UUID,
        site_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> FunnelStats:
        """
        Compute per-step count, dropoff and conversion rate.

        Raises:
            FunnelNotFoundError: Unknown funnel or one owned by another site
        """
        funnel = await self.funnels.get_for_site(funnel_id, site_id)
        if funnel is None:
            raise FunnelNotFoundError("Funnel not found", funnel_id=str(funnel_id), site_id=site_id)

        raw_steps = list(funnel.steps or [])
        if not raw_steps:
            return FunnelStats(funnel=funnel)

        names = [step_name(raw, i) for i, raw in enumerate(raw_steps)]
        cohort = await self.sessions.list_ids_started_between(site_id, from_date, to_date)

        if not cohort:
            return FunnelStats(
                funnel=funnel,
                steps=[FunnelStepStats(name, 0, 0, 0.0) for name in names],
            )

        conditions = [parse_condition(raw) for raw in raw_steps]
        qualified: list[str] = list(dict.fromkeys(cohort))
        previous = len(qualified)
        results: list[FunnelStepStats] = []

        for name, condition in zip(names, conditions):
            survivors = await self._surviving_sessions(funnel, site_id, condition, qualified)
            count = len(survivors)
            results.append(
                FunnelStepStats(
                    name=name,
                    count=count,
                    dropoff=previous - count,
                    conversion_rate=conversion_rate(count, previous),
                )
            )
            previous = count
            qualified = [sid for sid in qualified if sid in survivors]

        logger.info(
            "Funnel computed",
            funnel_id=str(funnel.id),
            cohort=len(cohort),
            completed=previous,
        )
        return FunnelStats(funnel=funnel, steps=results)

    async def _surviving_sessions(
        self,
        funnel: Funnel,
        site_id: str,
        condition: Condition,
        qualified: list[str],
    ) -> set[str]:
        survivors: set[str] = set()
        for start in range(0, len(qualified), self.batch_size):
            batch = qualified[start:start + self.batch_size]
            try:
                async with self.session.begin_nested():
                    events = await self.events.list_for_sessions(site_id, batch)
            except SQLAlchemyError as e:
                logger.error(
                    "Funnel batch failed",
                    funnel_id=str(funnel.id),
                    batch_start=start,
                    batch_size=len(batch),
                    error=str(e),
                )
                continue

            for event in events:
                if event.session_id not in survivors and matches(condition, event):
                    survivors.add(event.session_id)
        return survivors
