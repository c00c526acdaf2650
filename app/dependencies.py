"""FastAPI dependencies."""

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import ServiceName, settings
from app.core.events import EventBus, get_event_bus
from app.core.exceptions import ForbiddenException, UnauthorizedException
from app.core.realtime import RoomManager, get_room_manager
from app.core.redis_client import CacheManager, get_cache_manager
from app.core.security import INTERNAL_SERVICE_HEADER, is_internal_call
from app.database import get_db
from app.services.appointment_service import AppointmentService
from app.services.auth_service import AuthService
from app.services.directory_client import IdentityClient, ProfileClient
from app.services.event_publisher import EventPublisher
from app.services.notification_service import NotificationService

# Security
security = HTTPBearer(auto_error=False)

INTERNAL_ACTOR: dict[str, Any] = {"id": None, "role": "internal", "internal": True}


def get_identity_client() -> IdentityClient:
    return IdentityClient()


def get_profile_client() -> ProfileClient:
    return ProfileClient()


def get_notifier(rooms: Annotated[RoomManager, Depends(get_room_manager)]) -> NotificationService:
    return NotificationService(rooms)


def get_publisher(bus: Annotated[EventBus, Depends(get_event_bus)]) -> EventPublisher:
    """A fresh publisher per request (it buffers that request's events)."""
    return EventPublisher(bus)


def _service_of(request: Request) -> ServiceName:
    return getattr(request.app.state, "service", settings.service_name)


def current_user_from_account(account: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": account["id"],
        "email": account["email"],
        "role": account["role"],
        "name": account["name"],
        "surname": account["surname"],
        "profile_complete": account["profile_complete"],
    }


async def resolve_token(
    token: str,
    service: ServiceName,
    db: AsyncSession,
    identity: IdentityClient,
    bus: EventBus,
) -> dict[str, Any]:
    """
    Turn a bearer token into the current user.

    The identity service checks it against its own account store; the other
    services ask the identity service.
    """
    if service == ServiceName.IDENTITY:
        account = await AuthService(db, bus).validate_token(token)
        return current_user_from_account(account)
    return await identity.validate_token(token)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[IdentityClient, Depends(get_identity_client)],
    bus: Annotated[EventBus, Depends(get_event_bus)],
) -> dict[str, Any]:
    """
    Authenticate the request's bearer token.

    Raises:
        UnauthorizedException: Missing or invalid token
        ForbiddenException: Account deactivated
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")
    return await resolve_token(credentials.credentials, _service_of(request), db, identity, bus)


async def get_current_user_or_internal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[IdentityClient, Depends(get_identity_client)],
    bus: Annotated[EventBus, Depends(get_event_bus)],
    internal_header: Annotated[str | None, Header(alias=INTERNAL_SERVICE_HEADER)] = None,
) -> dict[str, Any]:
    """Accept either the shared internal-service header or a user token."""
    if is_internal_call(internal_header):
        return INTERNAL_ACTOR
    return await get_current_user(request, credentials, db, identity, bus)


async def require_internal(
    internal_header: Annotated[str | None, Header(alias=INTERNAL_SERVICE_HEADER)] = None,
) -> None:
    if not is_internal_call(internal_header):
        raise ForbiddenException("Access denied: internal services only")


def require_roles(*roles: str) -> Callable[..., Any]:
    """Dependency factory restricting an endpoint to the given roles."""

    async def checker(
        user: Annotated[dict[str, Any], Depends(get_current_user)],
    ) -> dict[str, Any]:
        if user["role"] not in roles:
            raise ForbiddenException("You do not have permission to perform this action")
        return user

    return checker


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[dict[str, Any], Depends(get_current_user)]
CurrentUserOrInternal = Annotated[dict[str, Any], Depends(get_current_user_or_internal)]
StaffUser = Annotated[dict[str, Any], Depends(require_roles("admin", "front_desk"))]
AdminUser = Annotated[dict[str, Any], Depends(require_roles("admin"))]
Bus = Annotated[EventBus, Depends(get_event_bus)]
Cache = Annotated[CacheManager | None, Depends(get_cache_manager)]
Identity = Annotated[IdentityClient, Depends(get_identity_client)]
Profiles = Annotated[ProfileClient, Depends(get_profile_client)]
Publisher = Annotated[EventPublisher, Depends(get_publisher)]
Notifier = Annotated[NotificationService, Depends(get_notifier)]


def get_appointment_service(
    db: DatabaseSession,
    publisher: Publisher,
    notifier: Notifier,
    profiles: Profiles,
) -> AppointmentService:
    return AppointmentService(db, publisher, notifier, profiles)


Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
