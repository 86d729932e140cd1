"""
Funnel definition model.
"""
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from beacon.core.database import Base, JSONType


class Funnel(Base):
    """Ordered list of step conditions, read-only to the engine."""

    __tablename__ = "funnels"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # [{"name": "View pricing", "type": "page_visit", "match": "exact", "value": "/pricing"}, ...]
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)

    # Stored for the dashboard; stats use an explicit date range
    window_hours: Mapped[int] = mapped_column(Integer, default=168)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Funnel {self.name} steps={len(self.steps or [])}>"
