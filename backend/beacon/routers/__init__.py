"""
API routers package.
"""
from beacon.routers.collect import router as collect_router
from beacon.routers.funnels import router as funnels_router
from beacon.routers.goals import router as goals_router
from beacon.routers.health import router as health_router

__all__ = [
    "health_router",
    "collect_router",
    "funnels_router",
    "goals_router",
]
