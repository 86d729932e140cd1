"""
Health check and monitoring endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text

from beacon.core.config import settings
from beacon.core.database import async_session_factory, is_db_available
from beacon.services.identity import salt_provider

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> dict:
    """API root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@router.get("/health")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
    }


@router.get("/health/ready")
async def readiness_check() -> dict:
    """
    Readiness probe - checks if the service can handle requests.
    Verifies database connectivity and reports the active salt version.
    """
    if not is_db_available():
        db_status = "unavailable"
    else:
        try:
            async with async_session_factory() as session:
                await session.execute(text("SELECT 1"))
            db_status = "connected"
        except Exception as e:
            db_status = f"error: {str(e)}"

    is_ready = db_status == "connected"

    return {
        "status": "ready" if is_ready else "not_ready",
        "checks": {
            "database": db_status,
            "salt_version": salt_provider.current.version,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    """
    Liveness probe - checks if the service is alive.
    Simple check that doesn't verify dependencies.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
