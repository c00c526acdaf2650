"""Tests for user replication between the identity and profile services."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from app.core.exceptions import NotFoundException
from app.models.accounts import accounts
from app.models.users import users
from app.schemas.events import EventEnvelope, EventType
from app.services.replication_service import (
    IdentityReplicator,
    ProfileReplicator,
    UserSyncService,
    coerce_columns,
)
from app.services.user_service import user_cache_key
from tests.factories import insert_account, insert_user


def envelope(event_type: EventType, **data) -> EventEnvelope:
    return EventEnvelope.build(event_type, data)


async def load_user(session_factory, user_id: int) -> dict | None:
    async with session_factory() as db:
        row = (await db.execute(select(users).where(users.c.id == user_id))).mappings().first()
        return dict(row) if row else None


@pytest.fixture
def replicator(session_factory) -> ProfileReplicator:
    return ProfileReplicator(session_factory)


def test_coerce_columns_parses_dates_and_drops_unknown_fields() -> None:
    values = coerce_columns(
        users,
        {
            "id": 5,
            "birth_date": "1990-04-12",
            "last_login_at": "2025-06-01T09:00:00+02:00",
            "password_hash": "x",
            "name": "Ana",
        },
    )
    assert set(values) == {"birth_date", "last_login_at", "name"}
    assert values["birth_date"].isoformat() == "1990-04-12"
    assert values["last_login_at"].isoformat() == "2025-06-01T07:00:00"


@pytest.mark.asyncio
async def test_user_created_is_materialized_once(session_factory, replicator) -> None:
    event = envelope(
        EventType.USER_CREATED,
        id=7,
        email="ana@example.com",
        role="client",
        name="Ana",
        surname="Lopez",
        active=True,
    )
    await replicator.handle_user_created(event)
    await replicator.handle_user_created(event)

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(users))).scalar()
    assert count == 1

    user = await load_user(session_factory, 7)
    assert user["email"] == "ana@example.com"
    assert user["active"] is True
    assert user["profile_complete"] is False


@pytest.mark.asyncio
async def test_update_before_create_is_dropped(session_factory, replicator) -> None:
    await replicator.handle_user_updated(envelope(EventType.USER_UPDATED, id=8, name="Late"))
    assert await load_user(session_factory, 8) is None


@pytest.mark.asyncio
async def test_update_merges_fields(db_session, session_factory) -> None:
    await insert_user(db_session, 9, phone="600111222")
    cache = MagicMock()
    replicator = ProfileReplicator(session_factory, cache)

    await replicator.handle_user_updated(
        envelope(EventType.USER_UPDATED, id=9, name="Renamed", role="practitioner")
    )

    user = await load_user(session_factory, 9)
    assert user["name"] == "Renamed"
    assert user["role"] == "practitioner"
    assert user["phone"] == "600111222"
    cache.delete.assert_called_with(user_cache_key(9))


@pytest.mark.asyncio
async def test_delete_deactivates_replica(db_session, session_factory, replicator) -> None:
    await insert_user(db_session, 12)
    await replicator.handle_user_deleted(envelope(EventType.USER_DELETED, id=12))

    user = await load_user(session_factory, 12)
    assert user is not None
    assert user["active"] is False


@pytest.mark.asyncio
async def test_login_event_records_last_login(db_session, session_factory, replicator) -> None:
    await insert_user(db_session, 13)
    await replicator.handle_auth_event(
        envelope(EventType.USER_LOGIN, user_id=13, login_at="2025-06-01T09:00:00")
    )

    user = await load_user(session_factory, 13)
    assert user["last_login_at"].isoformat() == "2025-06-01T09:00:00"


@pytest.mark.asyncio
async def test_other_auth_events_are_ignored(db_session, session_factory, replicator) -> None:
    await insert_user(db_session, 14)
    await replicator.handle_auth_event(envelope(EventType.USER_CREATED, user_id=14))
    assert (await load_user(session_factory, 14))["last_login_at"] is None


@pytest.mark.asyncio
async def test_identity_copy_takes_profile_fields_only(db_session, session_factory) -> None:
    account = await insert_account(db_session, "eva@example.com")
    replicator = IdentityReplicator(session_factory)

    await replicator.handle_user_updated(
        envelope(
            EventType.USER_UPDATED,
            id=account["id"],
            profile_complete=True,
            surname="Diaz",
            role="admin",
            email="other@example.com",
        )
    )

    async with session_factory() as db:
        row = (
            await db.execute(select(accounts).where(accounts.c.id == account["id"]))
        ).mappings().one()
    assert row["profile_complete"] is True
    assert row["surname"] == "Diaz"
    assert row["role"] == "client"
    assert row["email"] == "eva@example.com"

    await replicator.handle_user_deleted(envelope(EventType.USER_DELETED, id=account["id"]))
    async with session_factory() as db:
        active = (
            await db.execute(select(accounts.c.active).where(accounts.c.id == account["id"]))
        ).scalar()
    assert active is False


@pytest.mark.asyncio
async def test_sync_all_materializes_missing_users(db_session, identity) -> None:
    await insert_user(db_session, 1, email="admin@example.com", role="admin")
    identity.accounts = [
        {"id": 1, "email": "admin@example.com", "role": "admin", "name": "A", "surname": "B"},
        {"id": 2, "email": "new@example.com", "role": "client", "name": "C", "surname": "D",
         "active": True},
    ]

    summary = await UserSyncService(db_session, identity).sync_all()
    assert summary.total == 2
    assert summary.synchronized == 1
    assert summary.existing == 1


@pytest.mark.asyncio
async def test_sync_user_from_identity_listing(db_session, identity) -> None:
    identity.accounts = [
        {"id": 3, "email": "sync@example.com", "role": "client", "name": "S", "surname": "Y"}
    ]
    service = UserSyncService(db_session, identity)

    user = await service.sync_user(3)
    assert user["email"] == "sync@example.com"
    assert (await service.sync_user(3))["id"] == 3

    with pytest.raises(NotFoundException):
        await service.sync_user(4)
