"""
Services package for business logic layer.
"""
from beacon.services.funnel_engine import FunnelEngine, FunnelStats
from beacon.services.goal_engine import GoalEngine
from beacon.services.identity import SaltProvider, derive_visitor_hash, salt_provider
from beacon.services.ingestion import IngestionService
from beacon.services.notification_service import NotificationService
from beacon.services.session_aggregator import SessionAggregator
from beacon.services.visitor_aggregator import VisitorAggregator

__all__ = [
    "derive_visitor_hash",
    "SaltProvider",
    "salt_provider",
    "SessionAggregator",
    "VisitorAggregator",
    "GoalEngine",
    "FunnelEngine",
    "FunnelStats",
    "IngestionService",
    "NotificationService",
]
