"""
SQLAlchemy models package.
All models are imported here for easy access and Alembic discovery.
"""
from beacon.models.event import AnalyticsEvent, EventType
from beacon.models.funnel import Funnel
from beacon.models.goal import CountMode, Goal, GoalConversion
from beacon.models.session import AnalyticsSession
from beacon.models.system_setting import SystemSetting
from beacon.models.visitor import VisitorProfile

__all__ = [
    "AnalyticsEvent",
    "EventType",
    "AnalyticsSession",
    "VisitorProfile",
    "Goal",
    "GoalConversion",
    "CountMode",
    "Funnel",
    "SystemSetting",
]
