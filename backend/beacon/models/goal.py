"""
Goal definitions and the conversions they record.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base, JSONType


class CountMode(str, Enum):
    """How often a goal may convert within one session."""

    ONCE_PER_SESSION = "once_per_session"
    EVERY_TIME = "every_time"


class Goal(Base):
    """Goal definition, owned by site configuration and read-only here."""

    __tablename__ = "goals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    goal_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Array form or {"operator": ..., "conditions": [...]}
    conditions: Mapped[Any] = mapped_column(JSONType, nullable=False)

    revenue_value: Mapped[Optional[float]] = mapped_column(Float)
    use_dynamic_revenue: Mapped[bool] = mapped_column(Boolean, default=False)
    count_mode: Mapped[str] = mapped_column(
        String(30),
        default=CountMode.ONCE_PER_SESSION.value,
    )

    # Notification targets
    notify_webhook: Mapped[Optional[str]] = mapped_column(String(2048))
    notify_slack_webhook: Mapped[Optional[str]] = mapped_column(String(2048))
    notify_email: Mapped[Optional[list[str]]] = mapped_column(JSONType)

    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    @property
    def counts_once_per_session(self) -> bool:
        return self.count_mode == CountMode.ONCE_PER_SESSION.value

    def __repr__(self) -> str:
        return f"<Goal {self.name}>"


class GoalConversion(Base):
    """Append-only record of a satisfied goal."""

    __tablename__ = "goal_conversions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    goal_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("goals.id", ondelete="CASCADE"),
        nullable=False,
    )
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    visitor_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Attribution snapshot
    referrer_hostname: Mapped[Optional[str]] = mapped_column(String(255))
    utm_source: Mapped[Optional[str]] = mapped_column(String(255))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255))
    entry_path: Mapped[Optional[str]] = mapped_column(String(1024))
    conversion_path: Mapped[Optional[str]] = mapped_column(String(1024))

    revenue: Mapped[Optional[float]] = mapped_column(Float)
    converted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("goal_id", "event_id", name="uq_goal_conversions_goal_event"),
        Index("idx_goal_conversions_goal_session", "goal_id", "session_id"),
    )

    def __repr__(self) -> str:
        return f"<GoalConversion goal={self.goal_id} session={self.session_id}>"
