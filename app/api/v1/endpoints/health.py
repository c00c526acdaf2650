"""Health check endpoints shared by every service."""

from fastapi import APIRouter, Request, status
from pydantic import BaseModel

from app.config import ServiceName, settings
from app.core.events import get_event_bus
from app.core.realtime import get_room_manager
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection

router = APIRouter()


def _service(request: Request) -> ServiceName:
    return getattr(request.app.state, "service", settings.service_name)


class HealthResponse(BaseModel):
    """Liveness of one service."""

    status: str
    service: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Readiness of one service and its dependencies."""

    database: str
    redis: str
    consumers: int
    realtime_rooms: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check(request: Request) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service=_service(request).value,
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check(request: Request) -> DetailedHealthResponse:
    """
    Check the service's database and the Redis instance behind cache and bus.

    Redis being down degrades the service: requests still succeed but events
    are not delivered until it is back.
    """
    service = _service(request)
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()

    return DetailedHealthResponse(
        status="healthy" if db_healthy and redis_healthy else "degraded",
        service=service.value,
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        consumers=len(get_event_bus().consumers),
        realtime_rooms=len(get_room_manager().rooms) if service == ServiceName.SCHEDULING else None,
    )


@router.get("/ping", status_code=status.HTTP_200_OK, summary="Simple ping")
async def ping() -> dict[str, str]:
    return {"message": "pong"}
