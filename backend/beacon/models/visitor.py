"""
Visitor profile model - lifetime aggregate per anonymous visitor and site.
"""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Float, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base, JSONType


class VisitorProfile(Base):
    """
    Visitor aggregate.

    first_* attribution columns are written once on insert; last_* columns
    are overwritten by every event.
    """

    __tablename__ = "visitors"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    visitor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Totals
    total_sessions: Mapped[int] = mapped_column(Integer, default=0)
    total_pageviews: Mapped[int] = mapped_column(Integer, default=0)
    total_events: Mapped[int] = mapped_column(Integer, default=0)
    total_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    total_engaged_time_ms: Mapped[int] = mapped_column(Integer, default=0)

    # First-touch attribution
    first_referrer_hostname: Mapped[Optional[str]] = mapped_column(String(255))
    first_utm_source: Mapped[Optional[str]] = mapped_column(String(255))
    first_utm_medium: Mapped[Optional[str]] = mapped_column(String(255))
    first_utm_campaign: Mapped[Optional[str]] = mapped_column(String(255))
    first_entry_path: Mapped[Optional[str]] = mapped_column(String(1024))

    # Last-known device & location
    last_country_code: Mapped[Optional[str]] = mapped_column(String(2))
    last_city: Mapped[Optional[str]] = mapped_column(String(100))
    last_device_type: Mapped[Optional[str]] = mapped_column(String(50))
    last_browser: Mapped[Optional[str]] = mapped_column(String(100))
    last_os: Mapped[Optional[str]] = mapped_column(String(100))
    last_language: Mapped[Optional[str]] = mapped_column(String(35))
    last_screen_width: Mapped[Optional[int]] = mapped_column(Integer)
    last_screen_height: Mapped[Optional[int]] = mapped_column(Integer)

    custom_props: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    __table_args__ = (
        UniqueConstraint("site_id", "visitor_id", name="uq_visitors_site_visitor"),
    )

    def __repr__(self) -> str:
        return f"<VisitorProfile {self.visitor_id[:12]} sessions={self.total_sessions}>"
