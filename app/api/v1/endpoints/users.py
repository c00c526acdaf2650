"""User profile endpoints (profile service)."""

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from app.core.exceptions import ConflictException, ForbiddenException, NotFoundException
from app.dependencies import (
    AdminUser,
    Bus,
    Cache,
    CurrentUser,
    CurrentUserOrInternal,
    DatabaseSession,
    Identity,
    StaffUser,
    require_internal,
)
from app.schemas.users import (
    STAFF_ROLES,
    ProfileCompletion,
    SyncSummary,
    UserCreateWithId,
    UserListResponse,
    UserResponse,
    UserRole,
    UserUpdate,
)
from app.services.replication_service import UserSyncService, materialize_user
from app.services.user_service import UserService

router = APIRouter()


def _require_staff_or_internal(actor: dict[str, Any]) -> None:
    if not actor.get("internal") and actor["role"] not in STAFF_ROLES:
        raise ForbiddenException("Access denied")


@router.get(
    "",
    response_model=UserListResponse,
    status_code=status.HTTP_200_OK,
    summary="List users (staff)",
)
async def list_users(
    db: DatabaseSession,
    cache: Cache,
    _staff: StaffUser,
    role: UserRole | None = Query(None, description="Filter by role"),
    active: bool | None = Query(None, description="Filter by active flag"),
    search: str | None = Query(None, description="Match name, surname or email"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> UserListResponse:
    """
    List users with filters and pagination.

    Returns:
        Paginated list of users
    """
    return await UserService(db, cache_manager=cache).list_users(
        page=page, page_size=page_size, role=role, active=active, search=search
    )


@router.get(
    "/practitioners/available",
    response_model=list[UserResponse],
    status_code=status.HTTP_200_OK,
    summary="Active practitioners",
)
async def available_practitioners(
    db: DatabaseSession,
    _actor: CurrentUserOrInternal,
) -> list[UserResponse]:
    users = await UserService(db).available_practitioners()
    return [UserResponse.model_validate(u) for u in users]


@router.get(
    "/role/{role}",
    response_model=list[UserResponse],
    status_code=status.HTTP_200_OK,
    summary="Active users of a role",
)
async def users_by_role(
    role: UserRole,
    db: DatabaseSession,
    actor: CurrentUserOrInternal,
) -> list[UserResponse]:
    _require_staff_or_internal(actor)
    users = await UserService(db).list_by_role(role)
    return [UserResponse.model_validate(u) for u in users]


@router.get(
    "/by-email/{email}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Find a user by email",
)
async def user_by_email(
    email: str,
    db: DatabaseSession,
    actor: CurrentUserOrInternal,
) -> UserResponse:
    _require_staff_or_internal(actor)
    user = await UserService(db).get_user_by_email(email)
    if not user:
        raise NotFoundException("User not found")
    return UserResponse.model_validate(user)


@router.post(
    "/internal/create-with-id",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Materialize a user with its identity-service id (internal)",
    dependencies=[Depends(require_internal)],
)
async def create_with_id(
    data: UserCreateWithId,
    db: DatabaseSession,
    cache: Cache,
) -> UserResponse:
    user, created = await materialize_user(db, data.model_dump(mode="json"), cache)
    if not created:
        raise ConflictException("A user with this email already exists")
    return UserResponse.model_validate(user)


@router.post(
    "/sync",
    response_model=SyncSummary,
    status_code=status.HTTP_200_OK,
    summary="Materialize every user missing from this service",
)
async def sync_all_users(
    db: DatabaseSession,
    cache: Cache,
    identity: Identity,
    actor: CurrentUserOrInternal,
) -> SyncSummary:
    """Pull the identity listing and create the missing replicas."""
    if not actor.get("internal") and actor["role"] != UserRole.ADMIN.value:
        raise ForbiddenException("Access denied")
    return await UserSyncService(db, identity, cache).sync_all()


@router.post(
    "/sync/{user_id}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Materialize one user on demand",
)
async def sync_user(
    user_id: int,
    db: DatabaseSession,
    cache: Cache,
    identity: Identity,
    _actor: CurrentUserOrInternal,
) -> UserResponse:
    """Fallback used when a replication event has not arrived yet."""
    user = await UserSyncService(db, identity, cache).sync_user(user_id)
    return UserResponse.model_validate(user)


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a user",
)
async def get_user(
    user_id: int,
    db: DatabaseSession,
    cache: Cache,
    actor: CurrentUserOrInternal,
) -> UserResponse:
    """Clients may only read their own profile."""
    if actor["role"] == UserRole.CLIENT.value and actor["id"] != user_id:
        raise ForbiddenException("You can only view your own profile")
    user = await UserService(db, cache_manager=cache).require_user(user_id)
    return UserResponse.model_validate(user)


@router.put(
    "/{user_id}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Update a user profile",
)
async def update_user(
    user_id: int,
    data: UserUpdate,
    db: DatabaseSession,
    bus: Bus,
    cache: Cache,
    current_user: CurrentUser,
) -> UserResponse:
    user = await UserService(db, bus, cache).update_user(user_id, data, current_user)
    return UserResponse.model_validate(user)


@router.put(
    "/{user_id}/complete-profile",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Complete a client profile",
)
async def complete_profile(
    user_id: int,
    data: ProfileCompletion,
    db: DatabaseSession,
    bus: Bus,
    cache: Cache,
    current_user: CurrentUser,
) -> UserResponse:
    """Required before the client can book appointments."""
    user = await UserService(db, bus, cache).complete_profile(user_id, data, current_user)
    return UserResponse.model_validate(user)


@router.patch(
    "/{user_id}/toggle-active",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Activate or deactivate a user (admin)",
)
async def toggle_active(
    user_id: int,
    db: DatabaseSession,
    bus: Bus,
    cache: Cache,
    _admin: AdminUser,
) -> UserResponse:
    user = await UserService(db, bus, cache).toggle_active(user_id)
    return UserResponse.model_validate(user)


@router.delete(
    "/{user_id}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Deactivate a user (admin)",
)
async def delete_user(
    user_id: int,
    db: DatabaseSession,
    bus: Bus,
    cache: Cache,
    _admin: AdminUser,
) -> UserResponse:
    """Users are soft-deleted: the record stays with ``active=false``."""
    user = await UserService(db, bus, cache).deactivate_user(user_id)
    return UserResponse.model_validate(user)
