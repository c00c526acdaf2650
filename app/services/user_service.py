"""User profile service (profile service)."""

from typing import Any

import structlog
from sqlalchemy import and_, func, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import utcnow
from app.core.events import EventBus
from app.core.exceptions import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
)
from app.core.redis_client import CacheManager
from app.models.users import users
from app.schemas.events import EventType
from app.schemas.users import (
    STAFF_ROLES,
    ProfileCompletion,
    UserListResponse,
    UserResponse,
    UserRole,
    UserUpdate,
)

logger = structlog.get_logger()


def user_cache_key(user_id: int) -> str:
    """Generate cache key for user."""
    return f"user:{user_id}"


class UserService:
    """Service for user profile operations."""

    def __init__(
        self,
        db: AsyncSession,
        bus: EventBus | None = None,
        cache_manager: CacheManager | None = None,
    ):
        """Initialize service with database session, event bus and optional cache."""
        self.db = db
        self.bus = bus
        self.cache = cache_manager

    def invalidate(self, user_id: int) -> None:
        if self.cache:
            self.cache.delete(user_cache_key(user_id))

    async def _publish(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self.bus is not None:
            await self.bus.publish(event_type, data)

    async def get_user_by_id(self, user_id: int) -> dict[str, Any] | None:
        """Get user by ID with caching."""
        if self.cache:
            cached_user = self.cache.get_json(user_cache_key(user_id))
            if cached_user:
                return cached_user

        result = await self.db.execute(select(users).where(users.c.id == user_id))
        user = result.mappings().first()
        if not user:
            return None

        user_dict = dict(user)
        if self.cache:
            self.cache.set_json(
                user_cache_key(user_id), user_dict, ttl=settings.user_cache_ttl_seconds
            )
        return user_dict

    async def require_user(self, user_id: int) -> dict[str, Any]:
        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundException("User not found")
        return user

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        result = await self.db.execute(select(users).where(users.c.email == email))
        user = result.mappings().first()
        return dict(user) if user else None

    async def list_users(
        self,
        page: int = 1,
        page_size: int = 20,
        role: UserRole | None = None,
        active: bool | None = None,
        search: str | None = None,
    ) -> UserListResponse:
        """List users with filtering and pagination."""
        conditions = []
        if role:
            conditions.append(users.c.role == role.value)
        if active is not None:
            conditions.append(users.c.active == active)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                func.lower(users.c.name).like(pattern)
                | func.lower(users.c.surname).like(pattern)
                | func.lower(users.c.email).like(pattern)
            )

        where = and_(true(), *conditions)
        total = (
            await self.db.execute(select(func.count()).select_from(users).where(where))
        ).scalar() or 0

        stmt = (
            select(users)
            .where(where)
            .order_by(users.c.created_at.desc(), users.c.id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        rows = (await self.db.execute(stmt)).mappings().all()

        return UserListResponse(
            total=total,
            page=page,
            page_size=page_size,
            items=[UserResponse.model_validate(dict(row)) for row in rows],
        )

    async def list_by_role(self, role: UserRole, active_only: bool = True) -> list[dict[str, Any]]:
        conditions = [users.c.role == role.value]
        if active_only:
            conditions.append(users.c.active == True)  # noqa: E712
        stmt = select(users).where(and_(*conditions)).order_by(users.c.surname, users.c.name)
        return [dict(row) for row in (await self.db.execute(stmt)).mappings().all()]

    async def available_practitioners(self) -> list[dict[str, Any]]:
        return await self.list_by_role(UserRole.PRACTITIONER)

    async def _national_id_taken(self, national_id: str, user_id: int) -> bool:
        stmt = select(users.c.id).where(
            and_(users.c.national_id == national_id, users.c.id != user_id)
        )
        return (await self.db.execute(stmt)).first() is not None

    async def _apply(self, user_id: int, values: dict[str, Any]) -> dict[str, Any]:
        values = {**values, "updated_at": utcnow()}
        stmt = update(users).where(users.c.id == user_id).values(**values).returning(users)
        result = await self.db.execute(stmt)
        await self.db.commit()
        self.invalidate(user_id)
        return dict(result.mappings().one())

    async def update_user(
        self, user_id: int, data: UserUpdate, actor: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Update a profile.

        Args:
            user_id: Target user
            data: Fields to change
            actor: Authenticated caller; must be the owner or staff

        Raises:
            ForbiddenException: Caller is neither owner nor staff
            BadRequestException: A role change was requested; roles are
                changed on the identity service, which replicates them here
            ConflictException: National ID already used by someone else
        """
        if actor["id"] != user_id and actor["role"] not in STAFF_ROLES:
            raise ForbiddenException("You can only update your own profile")
        await self.require_user(user_id)

        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("role") is not None:
            raise BadRequestException("Roles can only be changed through the identity service")
        update_data = {k: v for k, v in update_data.items() if v is not None}
        if not update_data:
            return await self.require_user(user_id)

        if "national_id" in update_data and await self._national_id_taken(
            update_data["national_id"], user_id
        ):
            raise ConflictException("National ID is already registered")

        user = await self._apply(user_id, update_data)
        await self._publish(EventType.USER_UPDATED, {"id": user_id, **update_data})
        logger.info("user_updated", user_id=user_id, fields=sorted(update_data))
        return user

    async def complete_profile(
        self, user_id: int, data: ProfileCompletion, actor: dict[str, Any]
    ) -> dict[str, Any]:
        """Fill the client-only profile fields and flag the profile complete."""
        if actor["id"] != user_id and actor["role"] not in STAFF_ROLES:
            raise ForbiddenException("You can only complete your own profile")
        user = await self.require_user(user_id)
        if user["role"] != UserRole.CLIENT.value:
            raise BadRequestException("Only clients complete their profile this way")
        if await self._national_id_taken(data.national_id, user_id):
            raise ConflictException("National ID is already registered")

        values = {**data.model_dump(), "profile_complete": True}
        user = await self._apply(user_id, values)
        await self._publish(
            EventType.USER_UPDATED,
            {"id": user_id, "profile_complete": True, "phone": data.phone},
        )
        logger.info("profile_completed", user_id=user_id)
        return user

    async def toggle_active(self, user_id: int) -> dict[str, Any]:
        user = await self.require_user(user_id)
        user = await self._apply(user_id, {"active": not user["active"]})
        await self._publish(EventType.USER_UPDATED, {"id": user_id, "active": user["active"]})
        return user

    async def deactivate_user(self, user_id: int) -> dict[str, Any]:
        """Soft delete: users are never removed."""
        await self.require_user(user_id)
        user = await self._apply(user_id, {"active": False})
        await self._publish(EventType.USER_DELETED, {"user_id": user_id, "id": user_id})
        logger.info("user_deactivated", user_id=user_id)
        return user
