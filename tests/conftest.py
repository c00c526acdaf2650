import os
from collections.abc import AsyncGenerator
from typing import Any

# Settings are read at import time: configure before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["CACHE_ENABLED"] = "false"
os.environ["CONSUMERS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EVENT_DELIVERY_MODE"] = "direct"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["INTERNAL_SERVICE_TOKEN"] = "test-internal-token"

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import ServiceName
from app.core.events import get_event_bus
from app.core.realtime import RoomManager, get_room_manager
from app.database import get_db
from app.dependencies import get_identity_client, get_profile_client
from app.main import create_app
from app.models import SERVICE_METADATA
from tests.factories import FakeIdentity, FakeProfiles, future_slot, make_bus

# Every service's tables in one throwaway database
metadata = MetaData()
for service_metadata in SERVICE_METADATA.values():
    for item in service_metadata:
        for table in item.tables.values():
            table.to_metadata(metadata)

# Single in-memory connection shared by every session
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

# Create test session factory
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    """Factory for code that opens its own sessions (consumers, sweeps)."""
    return TestSessionLocal


@pytest.fixture
def bus():
    return make_bus()


@pytest.fixture
def rooms() -> RoomManager:
    return RoomManager()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles()


def build_app(
    service: ServiceName,
    db_session: AsyncSession,
    bus: Any,
    rooms: RoomManager,
    identity: FakeIdentity,
    profiles: FakeProfiles,
) -> FastAPI:
    """Application of one service wired to the test doubles."""
    app = create_app(service)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: bus
    app.dependency_overrides[get_room_manager] = lambda: rooms
    app.dependency_overrides[get_identity_client] = lambda: identity
    app.dependency_overrides[get_profile_client] = lambda: profiles
    return app


@pytest.fixture
def scheduling_app(db_session, bus, rooms, identity, profiles) -> FastAPI:
    return build_app(ServiceName.SCHEDULING, db_session, bus, rooms, identity, profiles)


@pytest_asyncio.fixture
async def identity_client(
    db_session, bus, rooms, identity, profiles
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client of the identity service."""
    app = build_app(ServiceName.IDENTITY, db_session, bus, rooms, identity, profiles)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def profile_client(
    db_session, bus, rooms, identity, profiles
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client of the profile service."""
    app = build_app(ServiceName.PROFILE, db_session, bus, rooms, identity, profiles)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def scheduling_client(scheduling_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client of the scheduling service."""
    transport = ASGITransport(app=scheduling_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# Scheduling users: known to the fake profile client, authenticated by token claims


@pytest.fixture
def client_user(profiles: FakeProfiles) -> dict[str, Any]:
    return profiles.add(10, "client")


@pytest.fixture
def other_client(profiles: FakeProfiles) -> dict[str, Any]:
    return profiles.add(11, "client")


@pytest.fixture
def admin_user(profiles: FakeProfiles) -> dict[str, Any]:
    return profiles.add(1, "admin")


@pytest.fixture
def front_desk_user(profiles: FakeProfiles) -> dict[str, Any]:
    return profiles.add(2, "front_desk")


@pytest.fixture
def practitioner(profiles: FakeProfiles) -> dict[str, Any]:
    return profiles.add(20, "practitioner")


@pytest.fixture
def second_practitioner(profiles: FakeProfiles) -> dict[str, Any]:
    return profiles.add(21, "practitioner")


@pytest.fixture
def appointment_data() -> dict[str, Any]:
    """Sample appointment data for testing."""
    return {
        "consultation_type": "general",
        "category": "odontologia_general",
        "scheduled_at": future_slot().isoformat(),
        "details": "Routine check",
    }
