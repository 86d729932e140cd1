"""
Repository package for data access layer.
"""
from beacon.repositories.base import BaseRepository
from beacon.repositories.event import EventRepository
from beacon.repositories.funnel import FunnelRepository
from beacon.repositories.goal import GoalConversionRepository, GoalRepository
from beacon.repositories.session import SessionRepository
from beacon.repositories.setting import SettingRepository
from beacon.repositories.visitor import VisitorRepository

__all__ = [
    "BaseRepository",
    "EventRepository",
    "SessionRepository",
    "VisitorRepository",
    "GoalRepository",
    "GoalConversionRepository",
    "FunnelRepository",
    "SettingRepository",
]
