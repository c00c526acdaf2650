"""FastAPI application entry point.

One code base, three deployables: ``SERVICE_NAME`` selects the identity,
profile or scheduling service.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry, PlatformCollector, ProcessCollector
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.router import build_api_router
from app.config import ServiceName, settings
from app.core.events import close_event_bus, get_event_bus
from app.core.exceptions import AppException
from app.core.realtime import get_room_manager
from app.core.redis_client import close_redis_connection, get_async_redis_client, get_cache_manager
from app.core.scheduler import shutdown_scheduler, start_scheduler
from app.database import engine
from app.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.middleware.logging import LoggingMiddleware, configure_logging
from app.services.consumers import register_consumers
from app.services.notification_service import NotificationService
from app.services.reminder_service import SweepJobs

# Configure logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Starts the event consumers and the sweep scheduler of this service and
    stops them on shutdown.
    """
    service: ServiceName = app.state.service

    # Startup
    logger.info("application_startup", environment=settings.environment, service=service.value)

    # Test database connection
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_connected")
    except Exception as e:
        logger.error("database_connection_failed", error=str(e))

    # Test Redis connection
    try:
        await get_async_redis_client().ping()
        logger.info("redis_connected")
    except Exception as e:
        logger.error("redis_connection_failed", error=str(e))

    bus = get_event_bus()
    if settings.consumers_enabled:
        register_consumers(bus, service, cache=get_cache_manager())
        await bus.start()

    scheduler_started = False
    if service == ServiceName.SCHEDULING and settings.scheduler_enabled:
        SweepJobs(bus, NotificationService(get_room_manager())).register()
        start_scheduler()
        scheduler_started = True
        logger.info("scheduler_started")

    yield

    # Shutdown
    logger.info("application_shutdown", service=service.value)

    if scheduler_started:
        shutdown_scheduler()

    await close_event_bus()

    # Close database connections
    await engine.dispose()
    logger.info("database_connections_closed")

    # Close Redis connection
    await close_redis_connection()
    logger.info("redis_connection_closed")


def create_app(service: ServiceName | None = None) -> FastAPI:
    """
    Build the FastAPI application of one service.

    Args:
        service: Service to build; defaults to ``SERVICE_NAME``

    Returns:
        Configured application
    """
    service = service or settings.service_name

    app = FastAPI(
        title=f"{settings.app_name} - {service.value}",
        version=settings.app_version,
        description="Dental clinic backend: identity, profile and scheduling services",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.service = service

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add logging middleware
    app.add_middleware(LoggingMiddleware)

    # Add exception handlers
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

    # Include API router
    app.include_router(build_api_router(service), prefix=settings.api_v1_prefix)

    # Setup Prometheus instrumentation (one registry per app instance)
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_instrument_requests_inprogress=False,
        excluded_handlers=["/docs", "/redoc", "/openapi.json"],
        registry=registry,
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """
        Root endpoint.

        Returns:
            Welcome message
        """
        return {
            "message": f"Welcome to {settings.app_name}",
            "service": service.value,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
