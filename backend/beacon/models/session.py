"""
Session model - live aggregate of one visit, updated on every event.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base, JSONType


class AnalyticsSession(Base):
    """Session aggregate keyed by the tracker's session id."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    visitor_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    engaged_time_ms: Mapped[int] = mapped_column(Integer, default=0)

    # Engagement
    pageviews: Mapped[int] = mapped_column(Integer, default=0)
    events_count: Mapped[int] = mapped_column(Integer, default=0)
    is_bounce: Mapped[bool] = mapped_column(Boolean, default=True)

    # Entry & exit
    entry_path: Mapped[Optional[str]] = mapped_column(String(1024))
    exit_path: Mapped[Optional[str]] = mapped_column(String(1024))

    # First-touch attribution
    referrer_hostname: Mapped[Optional[str]] = mapped_column(String(255))
    utm_source: Mapped[Optional[str]] = mapped_column(String(255))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255))

    # Device context (from first event)
    country_code: Mapped[Optional[str]] = mapped_column(String(2))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    device_type: Mapped[Optional[str]] = mapped_column(String(50))
    browser: Mapped[Optional[str]] = mapped_column(String(100))
    os: Mapped[Optional[str]] = mapped_column(String(100))

    total_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    custom_props: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    __table_args__ = (
        Index("idx_sessions_site_started", "site_id", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<AnalyticsSession {self.id} pageviews={self.pageviews}>"
