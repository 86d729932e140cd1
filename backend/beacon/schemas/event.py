"""
Event collection schemas.
"""
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from beacon.models.event import EventType

EVENT_TYPES = (
    EventType.PAGEVIEW,
    EventType.CUSTOM,
    EventType.FORM_SUBMIT,
    EventType.FORM_ABANDON,
    EventType.OUTBOUND_CLICK,
    EventType.FILE_DOWNLOAD,
    EventType.SCROLL_DEPTH,
    EventType.RAGE_CLICK,
    EventType.DEAD_CLICK,
    EventType.ERROR,
    EventType.ECOMMERCE,
    EventType.ENGAGEMENT,
)


class IncomingEvent(BaseModel):
    """Payload posted by the browser tracker."""

    model_config = ConfigDict(extra="ignore")

    site_id: str = Field(..., min_length=1, max_length=64)
    session_id: str = Field(..., min_length=1, max_length=255)
    event_type: str = Field(EventType.PAGEVIEW, pattern="^(" + "|".join(EVENT_TYPES) + ")$")
    event_name: Optional[str] = Field(None, max_length=255)
    event_data: dict[str, Any] = Field(default_factory=dict)

    url: Optional[str] = Field(None, max_length=2048)
    path: str = Field("/", max_length=2048)
    page_title: Optional[str] = Field(None, max_length=500)
    referrer: Optional[str] = Field(None, max_length=2048)
    referrer_hostname: Optional[str] = Field(None, max_length=255)

    utm_source: Optional[str] = Field(None, max_length=255)
    utm_medium: Optional[str] = Field(None, max_length=255)
    utm_campaign: Optional[str] = Field(None, max_length=255)
    utm_term: Optional[str] = Field(None, max_length=255)
    utm_content: Optional[str] = Field(None, max_length=255)

    screen_width: Optional[int] = Field(None, gt=0)
    screen_height: Optional[int] = Field(None, gt=0)
    language: Optional[str] = Field(None, max_length=35)
    timezone: Optional[str] = Field(None, max_length=100)

    scroll_depth_pct: Optional[int] = Field(None, ge=0, le=100)
    time_on_page_ms: Optional[int] = Field(None, ge=0)
    engaged_time_ms: Optional[int] = Field(None, ge=0)
    form_id: Optional[str] = Field(None, max_length=255)

    order_id: Optional[str] = Field(None, max_length=255)
    revenue: Optional[float] = None
    currency: Optional[str] = Field(None, max_length=3)

    custom_props: dict[str, Any] = Field(default_factory=dict)

    @property
    def screen_resolution(self) -> str:
        return f"{self.screen_width or 0}x{self.screen_height or 0}"


@dataclass(frozen=True)
class ClientContext:
    """Request attributes that never come from the payload."""

    ip: str
    user_agent: str = ""
    country_code: Optional[str] = None
    city: Optional[str] = None


class IngestResult(BaseModel):
    """Outcome of ingesting one event."""

    accepted: bool
    event_id: Optional[int] = None
    session_id: Optional[str] = None
    is_entry: bool = False
    is_bounce: bool = False
    reason: Optional[str] = None
