"""
Core package containing configuration, database, logging, and errors.
"""
from beacon.core.config import settings
from beacon.core.database import Base, DbSession, get_db_session
from beacon.core.exceptions import (
    BeaconError,
    EventNotFoundError,
    FunnelNotFoundError,
    NotificationDeliveryError,
    StoreUnavailableError,
    ValidationFailure,
)
from beacon.core.logging import configure_logging, get_logger

__all__ = [
    "settings",
    "Base",
    "DbSession",
    "get_db_session",
    "configure_logging",
    "get_logger",
    "BeaconError",
    "ValidationFailure",
    "StoreUnavailableError",
    "FunnelNotFoundError",
    "EventNotFoundError",
    "NotificationDeliveryError",
]
