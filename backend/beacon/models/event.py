"""
Event model - one immutable interaction fact from the tracker.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base, BigIntId, JSONType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType:
    """Event types emitted by the tracker."""

    PAGEVIEW = "pageview"
    CUSTOM = "custom"
    FORM_SUBMIT = "form_submit"
    FORM_ABANDON = "form_abandon"
    OUTBOUND_CLICK = "outbound_click"
    FILE_DOWNLOAD = "file_download"
    SCROLL_DEPTH = "scroll_depth"
    RAGE_CLICK = "rage_click"
    DEAD_CLICK = "dead_click"
    ERROR = "error"
    ECOMMERCE = "ecommerce"
    ENGAGEMENT = "engagement"


class AnalyticsEvent(Base):
    """
    Core analytics event - never mutated after insert except for the
    is_exit marker, which moves to the newest event of its session.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    visitor_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Event identification
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    event_name: Mapped[Optional[str]] = mapped_column(String(255))
    event_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    # Page context
    url: Mapped[Optional[str]] = mapped_column(String(2048))
    path: Mapped[str] = mapped_column(String(1024), nullable=False, default="/")
    page_title: Mapped[Optional[str]] = mapped_column(String(512))

    # Engagement
    scroll_depth_pct: Mapped[Optional[int]] = mapped_column(Integer)
    engaged_time_ms: Mapped[Optional[int]] = mapped_column(Integer)
    time_on_page_ms: Mapped[Optional[int]] = mapped_column(Integer)

    # Forms
    form_id: Mapped[Optional[str]] = mapped_column(String(255))

    # Ecommerce
    revenue: Mapped[Optional[float]] = mapped_column(Float)
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    order_id: Mapped[Optional[str]] = mapped_column(String(255))

    # Traffic source
    referrer: Mapped[Optional[str]] = mapped_column(Text)
    referrer_hostname: Mapped[Optional[str]] = mapped_column(String(255))
    utm_source: Mapped[Optional[str]] = mapped_column(String(255))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255))
    utm_term: Mapped[Optional[str]] = mapped_column(String(255))
    utm_content: Mapped[Optional[str]] = mapped_column(String(255))

    # Device & location (parsed at ingestion, never raw)
    browser: Mapped[Optional[str]] = mapped_column(String(100))
    os: Mapped[Optional[str]] = mapped_column(String(100))
    device_type: Mapped[Optional[str]] = mapped_column(String(50))
    country_code: Mapped[Optional[str]] = mapped_column(String(2))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    language: Mapped[Optional[str]] = mapped_column(String(35))
    screen_width: Mapped[Optional[int]] = mapped_column(Integer)
    screen_height: Mapped[Optional[int]] = mapped_column(Integer)

    custom_props: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    # Session position
    is_entry: Mapped[bool] = mapped_column(Boolean, default=False)
    is_exit: Mapped[bool] = mapped_column(Boolean, default=False)
    is_bounce: Mapped[bool] = mapped_column(Boolean, default=False)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("idx_events_session_timestamp", "session_id", "timestamp"),
        Index("idx_events_site_timestamp", "site_id", "timestamp"),
    )

    @property
    def is_pageview(self) -> bool:
        return self.event_type == EventType.PAGEVIEW

    def __repr__(self) -> str:
        return f"<AnalyticsEvent {self.id} {self.event_type} {self.path}>"
