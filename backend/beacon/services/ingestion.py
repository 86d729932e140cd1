"""
Ingestion pipeline - from tracker payload to stored, aggregated event.
"""
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.exceptions import StoreUnavailableError
from beacon.core.logging import get_logger
from beacon.models.event import AnalyticsEvent, utcnow
from beacon.schemas.event import ClientContext, IncomingEvent, IngestResult
from beacon.services.enrichment import detect_bot, extract_referrer_domain, parse_user_agent
from beacon.services.identity import SaltProvider, salt_provider
from beacon.services.outbox import GoalEvaluationQueue
from beacon.services.session_aggregator import SessionAggregator
from beacon.services.visitor_aggregator import VisitorAggregator

logger = get_logger(__name__)


class IngestionService:
    """
    Stores one event and folds it into its session and visitor.

    Goal evaluation is handed to `goal_queue` once the event row exists
    and never runs inside this call; a failing enqueue is logged and does
    not reject the event.
    """

    def __init__(
        self,
        session: AsyncSession,
        goal_queue: Optional[GoalEvaluationQueue] = None,
        salts: Optional[SaltProvider] = None,
    ) -> None:
        self.session = session
        self.goal_queue = goal_queue
        self.salts = salts or salt_provider
        self.session_aggregator = SessionAggregator(session)
        self.visitor_aggregator = VisitorAggregator(session)

    async def ingest(self, incoming: IncomingEvent, client: ClientContext) -> IngestResult:
        ua = parse_user_agent(client.user_agent)
        if detect_bot(client.user_agent, ua):
            logger.debug("Bot traffic dropped", site_id=incoming.site_id)
            return IngestResult(accepted=False, reason="bot")

        await self.salts.refresh(self.session)
        visitor_hash = self.salts.hash_visitor(
            client.ip,
            client.user_agent,
            incoming.screen_resolution,
            incoming.language or "",
            incoming.timezone or "",
        )

        event = AnalyticsEvent(**self._event_values(incoming, client, ua, visitor_hash))

        result = await self.session_aggregator.upsert_session(event)
        event.is_entry = result.is_entry
        event.is_bounce = result.is_bounce
        event.is_exit = True

        try:
            self.session.add(event)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Event insert failed", session_id=event.session_id, error=str(e))
            raise StoreUnavailableError("Event insert failed", session_id=event.session_id) from e

        await self.visitor_aggregator.upsert_visitor(event, is_new_session=result.is_entry)

        if self.goal_queue is not None:
            try:
                await self.goal_queue.enqueue(event.id, event.site_id)
            except Exception as e:
                logger.warning("Goal evaluation enqueue failed", event_id=event.id, error=str(e))

        logger.debug(
            "Event ingested",
            site_id=event.site_id,
            event_id=event.id,
            event_type=event.event_type,
            is_entry=result.is_entry,
        )
        return IngestResult(
            accepted=True,
            event_id=event.id,
            session_id=event.session_id,
            is_entry=result.is_entry,
            is_bounce=result.is_bounce,
        )

    def _event_values(
        self,
        incoming: IncomingEvent,
        client: ClientContext,
        ua: dict[str, Any],
        visitor_hash: str,
    ) -> dict[str, Any]:
        values = incoming.model_dump(exclude={"timezone"})
        values.update(
            visitor_hash=visitor_hash,
            referrer_hostname=(
                incoming.referrer_hostname or extract_referrer_domain(incoming.referrer)
            ),
            browser=ua["browser"],
            os=ua["os"],
            device_type=ua["device_type"],
            country_code=client.country_code,
            city=client.city,
            timestamp=utcnow(),
        )
        return values
