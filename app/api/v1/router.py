"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import appointments, auth, health, realtime, users
from app.config import ServiceName


def build_api_router(service: ServiceName) -> APIRouter:
    """Routes exposed by one service; health checks are shared by all."""
    api_router = APIRouter()

    # Include routers
    api_router.include_router(health.router, tags=["Health"])
    if service == ServiceName.IDENTITY:
        api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    elif service == ServiceName.PROFILE:
        api_router.include_router(users.router, prefix="/users", tags=["Users"])
    elif service == ServiceName.SCHEDULING:
        api_router.include_router(
            appointments.router, prefix="/appointments", tags=["Appointments"]
        )
        api_router.include_router(realtime.router, tags=["Realtime"])

    return api_router
