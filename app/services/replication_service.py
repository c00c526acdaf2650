"""Replication of the user record between the identity and profile services.

Each service keeps its own copy of the identity fields. Mutations travel as
``user.*`` events and are applied here; handlers are idempotent because the
bus delivers at least once.
"""

from collections.abc import Callable
from datetime import date
from typing import Any

import structlog
from sqlalchemy import Date, DateTime, Table, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import parse_utc, utcnow
from app.core.exceptions import NotFoundException
from app.core.redis_client import CacheManager
from app.database import AsyncSessionLocal
from app.models.accounts import accounts
from app.models.users import users
from app.schemas.events import EventEnvelope, EventType
from app.schemas.users import SyncSummary
from app.services.directory_client import IdentityClient
from app.services.user_service import user_cache_key

logger = structlog.get_logger()

SessionFactory = Callable[[], AsyncSession]

# Fields the identity copy accepts from the profile service
IDENTITY_MERGE_FIELDS = frozenset({"name", "surname", "profile_complete", "active"})
# Never taken from a payload
PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at"})


def coerce_columns(table: Table, values: dict[str, Any]) -> dict[str, Any]:
    """Keep only columns of ``table`` and parse ISO date strings from JSON payloads."""
    result: dict[str, Any] = {}
    for key, value in values.items():
        if key not in table.c or key in PROTECTED_FIELDS:
            continue
        column_type = table.c[key].type
        if isinstance(value, str) and isinstance(column_type, DateTime):
            value = parse_utc(value)
        elif isinstance(value, str) and isinstance(column_type, Date):
            value = date.fromisoformat(value[:10])
        result[key] = value
    return result


def _user_id(data: dict[str, Any]) -> int | None:
    value = data.get("user_id", data.get("id"))
    return int(value) if value is not None else None


async def materialize_user(
    db: AsyncSession,
    data: dict[str, Any],
    cache: CacheManager | None = None,
) -> tuple[dict[str, Any], bool]:
    """
    Create the local replica of a user unless one with the same email exists.

    The identifier is taken from the payload. ``active`` and
    ``profile_complete`` default to False unless the payload sets them.

    Returns:
        Tuple of (user, created)
    """
    result = await db.execute(select(users).where(users.c.email == data["email"]))
    existing = result.mappings().first()
    if existing:
        return dict(existing), False

    now = utcnow()
    values = {
        "role": "client",
        "name": "",
        "surname": "",
        "active": False,
        "profile_complete": False,
        **coerce_columns(users, data),
        "id": int(data["id"]),
        "created_at": now,
        "updated_at": now,
    }
    result = await db.execute(users.insert().values(**values).returning(users))
    await db.commit()
    if cache:
        cache.delete(user_cache_key(values["id"]))

    logger.info("user_replica_created", user_id=values["id"], email=values["email"])
    return dict(result.mappings().one()), True


class ProfileReplicator:
    """Applies identity events to the profile service's user store."""

    def __init__(
        self,
        session_factory: SessionFactory = AsyncSessionLocal,
        cache: CacheManager | None = None,
    ):
        self.session_factory = session_factory
        self.cache = cache

    def _invalidate(self, user_id: int) -> None:
        if self.cache:
            self.cache.delete(user_cache_key(user_id))

    async def handle_user_created(self, envelope: EventEnvelope) -> None:
        async with self.session_factory() as db:
            user, created = await materialize_user(db, envelope.data, self.cache)
        if not created:
            logger.debug("user_replica_exists", user_id=user["id"], email=user["email"])

    async def handle_user_updated(self, envelope: EventEnvelope) -> None:
        user_id = _user_id(envelope.data)
        if user_id is None:
            logger.warning("replication_update_dropped", reason="missing_id")
            return

        async with self.session_factory() as db:
            found = (await db.execute(select(users.c.id).where(users.c.id == user_id))).first()
            if not found:
                # Not replicated yet; the update is lost until the next full sync
                logger.warning("replication_update_dropped", user_id=user_id)
                return

            values = coerce_columns(users, envelope.data)
            if values:
                values["updated_at"] = utcnow()
                await db.execute(update(users).where(users.c.id == user_id).values(**values))
                await db.commit()
        self._invalidate(user_id)
        logger.info("user_replica_updated", user_id=user_id, fields=sorted(values))

    async def handle_user_deleted(self, envelope: EventEnvelope) -> None:
        user_id = _user_id(envelope.data)
        if user_id is None:
            return
        async with self.session_factory() as db:
            result = await db.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(active=False, updated_at=utcnow())
            )
            await db.commit()
        self._invalidate(user_id)
        if result.rowcount:
            logger.info("user_replica_deactivated", user_id=user_id)

    async def handle_auth_event(self, envelope: EventEnvelope) -> None:
        if envelope.event_type != EventType.USER_LOGIN.value:
            logger.debug("auth_event_ignored", event_type=envelope.event_type)
            return

        user_id = _user_id(envelope.data)
        if user_id is None:
            return
        login_at = envelope.data.get("login_at")
        last_login = (
            coerce_columns(users, {"last_login_at": login_at})["last_login_at"]
            if login_at
            else utcnow()
        )
        async with self.session_factory() as db:
            await db.execute(
                update(users).where(users.c.id == user_id).values(last_login_at=last_login)
            )
            await db.commit()
        self._invalidate(user_id)


class IdentityReplicator:
    """Applies profile-side changes back to the identity copy."""

    def __init__(self, session_factory: SessionFactory = AsyncSessionLocal):
        self.session_factory = session_factory

    async def handle_user_updated(self, envelope: EventEnvelope) -> None:
        user_id = _user_id(envelope.data)
        values = {k: v for k, v in envelope.data.items() if k in IDENTITY_MERGE_FIELDS}
        if user_id is None or not values:
            return
        values["updated_at"] = utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                update(accounts).where(accounts.c.id == user_id).values(**values)
            )
            await db.commit()
        if not result.rowcount:
            logger.warning("replication_update_dropped", user_id=user_id)

    async def handle_user_deleted(self, envelope: EventEnvelope) -> None:
        user_id = _user_id(envelope.data)
        if user_id is None:
            return
        async with self.session_factory() as db:
            await db.execute(
                update(accounts)
                .where(accounts.c.id == user_id)
                .values(active=False, updated_at=utcnow())
            )
            await db.commit()
        logger.info("account_deactivated", account_id=user_id)


class UserSyncService:
    """Pull-based fallback: materialize users straight from the identity listing."""

    def __init__(
        self,
        db: AsyncSession,
        identity: IdentityClient,
        cache: CacheManager | None = None,
    ):
        self.db = db
        self.identity = identity
        self.cache = cache

    async def sync_user(self, user_id: int) -> dict[str, Any]:
        """
        Materialize one user from the identity service.

        Raises:
            NotFoundException: The identity service does not know the user
        """
        result = await self.db.execute(select(users).where(users.c.id == user_id))
        existing = result.mappings().first()
        if existing:
            return dict(existing)

        for account in await self.identity.list_internal_users():
            if int(account["id"]) == user_id:
                user, _ = await materialize_user(self.db, account, self.cache)
                logger.info("user_synced", user_id=user_id)
                return user
        raise NotFoundException("User not found")

    async def sync_all(self) -> SyncSummary:
        """Materialize every user missing from the profile store."""
        listing = await self.identity.list_internal_users()
        synchronized = 0
        for account in listing:
            _, created = await materialize_user(self.db, account, self.cache)
            if created:
                synchronized += 1
        summary = SyncSummary(
            synchronized=synchronized,
            existing=len(listing) - synchronized,
            total=len(listing),
        )
        logger.info("users_synced", **summary.model_dump())
        return summary
