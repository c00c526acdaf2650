"""Durable queues each service consumes."""

from app.config import ServiceName
from app.core.events import EventBus, QueueBinding
from app.core.redis_client import CacheManager
from app.database import AsyncSessionLocal
from app.schemas.events import Exchange
from app.services.replication_service import (
    IdentityReplicator,
    ProfileReplicator,
    SessionFactory,
)

PROFILE_USER_CREATED = QueueBinding("profile.user.created", Exchange.USER.value, "user.created")
PROFILE_USER_UPDATED = QueueBinding("profile.user.updated", Exchange.USER.value, "user.updated")
PROFILE_USER_DELETED = QueueBinding("profile.user.deleted", Exchange.USER.value, "user.deleted")
PROFILE_AUTH_EVENTS = QueueBinding("profile.auth.events", Exchange.AUTH.value, "auth.*")

IDENTITY_USER_UPDATED = QueueBinding("identity.user.updated", Exchange.USER.value, "user.updated")
IDENTITY_USER_DELETED = QueueBinding("identity.user.deleted", Exchange.USER.value, "user.deleted")


def register_consumers(
    bus: EventBus,
    service: ServiceName,
    session_factory: SessionFactory = AsyncSessionLocal,
    cache: CacheManager | None = None,
) -> None:
    """Subscribe the handlers of ``service``. The scheduling service consumes nothing."""
    if service == ServiceName.PROFILE:
        profile = ProfileReplicator(session_factory, cache)
        bus.subscribe(PROFILE_USER_CREATED, profile.handle_user_created)
        bus.subscribe(PROFILE_USER_UPDATED, profile.handle_user_updated)
        bus.subscribe(PROFILE_USER_DELETED, profile.handle_user_deleted)
        bus.subscribe(PROFILE_AUTH_EVENTS, profile.handle_auth_event)
    elif service == ServiceName.IDENTITY:
        identity = IdentityReplicator(session_factory)
        bus.subscribe(IDENTITY_USER_UPDATED, identity.handle_user_updated)
        bus.subscribe(IDENTITY_USER_DELETED, identity.handle_user_deleted)
