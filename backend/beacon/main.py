"""
Beacon Engine API - Main Application Entry Point.

Event collection, goal conversions and funnel statistics for web analytics.
"""
import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beacon.core.config import settings
from beacon.core.database import close_db, get_db_context, init_db, is_db_available
from beacon.core.logging import configure_logging, get_logger
from beacon.middleware import ErrorHandlerMiddleware, RequestIdMiddleware
from beacon.routers import collect_router, funnels_router, goals_router, health_router
from beacon.services.identity import run_daily_rotation, salt_provider
from beacon.services.job_queue import create_queue_pool
from beacon.services.outbox import BackgroundNotificationOutbox

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "Starting application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    await init_db()

    if is_db_available():
        async with get_db_context() as session:
            await salt_provider.load(session)

    # Without Redis, goals are evaluated after commit and notifications sent in-process
    app.state.arq_pool = None
    if settings.redis_url:
        try:
            app.state.arq_pool = await create_queue_pool()
            logger.info("Job queue connected")
        except Exception as e:
            logger.warning("Job queue unavailable, using in-process delivery", error=str(e))
    app.state.notification_outbox = BackgroundNotificationOutbox()

    # No worker runs the rotation cron without Redis
    app.state.salt_rotation = None
    if app.state.arq_pool is None and is_db_available():
        app.state.salt_rotation = asyncio.create_task(
            run_daily_rotation(salt_provider, get_db_context)
        )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
        )
        logger.info("Sentry initialized")

    yield

    # Shutdown
    logger.info("Shutting down application")
    if app.state.salt_rotation is not None:
        app.state.salt_rotation.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.salt_rotation
    await app.state.notification_outbox.drain()
    if app.state.arq_pool is not None:
        await app.state.arq_pool.close()
    await close_db()


def create_app() -> FastAPI:
    """
    Application factory function.
    Creates and configures the FastAPI application.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Web analytics ingestion, goals and funnels API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Add middleware (order matters - last added = outermost)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(collect_router, prefix="/api")
    app.include_router(funnels_router, prefix="/api")
    app.include_router(goals_router, prefix="/api")

    logger.info("Application created", routes=len(app.routes))

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "beacon.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
