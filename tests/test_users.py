"""Tests for the profile service user endpoints."""

import pytest
from httpx import AsyncClient

from tests.factories import INTERNAL_HEADERS, auth_headers_for, insert_user, published


@pytest.fixture
def completion() -> dict:
    return {
        "national_id": "12345678A",
        "birth_date": "1990-04-12",
        "phone": "600123456",
        "address": "Calle Mayor 1",
    }


@pytest.mark.asyncio
async def test_create_with_id_requires_internal_header(profile_client: AsyncClient) -> None:
    payload = {"id": 40, "email": "new@example.com", "name": "New", "surname": "User"}

    denied = await profile_client.post("/api/v1/users/internal/create-with-id", json=payload)
    assert denied.status_code == 403

    response = await profile_client.post(
        "/api/v1/users/internal/create-with-id", json=payload, headers=INTERNAL_HEADERS
    )
    assert response.status_code == 201
    data = response.json()
    assert data["id"] == 40
    assert data["active"] is True
    assert data["profile_complete"] is False

    again = await profile_client.post(
        "/api/v1/users/internal/create-with-id",
        json={**payload, "id": 41},
        headers=INTERNAL_HEADERS,
    )
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_get_user_access(profile_client: AsyncClient, db_session) -> None:
    owner = await insert_user(db_session, 10)
    other = await insert_user(db_session, 11)
    desk = await insert_user(db_session, 2, role="front_desk")

    own = await profile_client.get("/api/v1/users/10", headers=auth_headers_for(owner))
    assert own.status_code == 200
    assert own.json()["email"] == owner["email"]

    foreign = await profile_client.get("/api/v1/users/10", headers=auth_headers_for(other))
    assert foreign.status_code == 403

    staff = await profile_client.get("/api/v1/users/10", headers=auth_headers_for(desk))
    assert staff.status_code == 200

    internal = await profile_client.get("/api/v1/users/11", headers=INTERNAL_HEADERS)
    assert internal.status_code == 200

    missing = await profile_client.get("/api/v1/users/999", headers=INTERNAL_HEADERS)
    assert missing.status_code == 404

    anonymous = await profile_client.get("/api/v1/users/10")
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_update_own_profile(profile_client: AsyncClient, db_session, bus) -> None:
    owner = await insert_user(db_session, 10)

    response = await profile_client.put(
        "/api/v1/users/10",
        json={"name": "Renamed", "phone": "600999888"},
        headers=auth_headers_for(owner),
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"

    event_type, payload = published(bus)[0]
    assert event_type == "USER_UPDATED"
    assert payload == {"id": 10, "name": "Renamed", "phone": "600999888"}


@pytest.mark.asyncio
async def test_role_change_is_rejected_on_profile(
    profile_client: AsyncClient, db_session, bus
) -> None:
    owner = await insert_user(db_session, 10)
    admin = await insert_user(db_session, 1, role="admin")

    for actor in (owner, admin):
        response = await profile_client.put(
            "/api/v1/users/10", json={"role": "practitioner"}, headers=auth_headers_for(actor)
        )
        assert response.status_code == 400
        assert "identity service" in response.json()["message"]

    user = await profile_client.get("/api/v1/users/10", headers=auth_headers_for(admin))
    assert user.json()["role"] == "client"
    bus.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_cannot_update_someone_else(profile_client: AsyncClient, db_session) -> None:
    await insert_user(db_session, 10)
    other = await insert_user(db_session, 11)
    response = await profile_client.put(
        "/api/v1/users/10", json={"name": "Hijack"}, headers=auth_headers_for(other)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_complete_profile(
    profile_client: AsyncClient, db_session, bus, completion: dict
) -> None:
    owner = await insert_user(db_session, 10)

    response = await profile_client.put(
        "/api/v1/users/10/complete-profile", json=completion, headers=auth_headers_for(owner)
    )
    assert response.status_code == 200
    data = response.json()
    assert data["profile_complete"] is True
    assert data["national_id"] == "12345678A"
    assert data["birth_date"] == "1990-04-12"

    event_type, payload = published(bus)[0]
    assert event_type == "USER_UPDATED"
    assert payload["profile_complete"] is True


@pytest.mark.asyncio
async def test_complete_profile_national_id_conflict(
    profile_client: AsyncClient, db_session, completion: dict
) -> None:
    await insert_user(db_session, 11, national_id="12345678A")
    owner = await insert_user(db_session, 10)

    response = await profile_client.put(
        "/api/v1/users/10/complete-profile", json=completion, headers=auth_headers_for(owner)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_complete_profile_is_for_clients(
    profile_client: AsyncClient, db_session, completion: dict
) -> None:
    practitioner = await insert_user(db_session, 20, role="practitioner")
    response = await profile_client.put(
        "/api/v1/users/20/complete-profile", json=completion, headers=auth_headers_for(practitioner)
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_toggle_active_and_soft_delete(
    profile_client: AsyncClient, db_session, bus
) -> None:
    admin = await insert_user(db_session, 1, role="admin")
    owner = await insert_user(db_session, 10)
    headers = auth_headers_for(admin)

    forbidden = await profile_client.patch(
        "/api/v1/users/10/toggle-active", headers=auth_headers_for(owner)
    )
    assert forbidden.status_code == 403

    toggled = await profile_client.patch("/api/v1/users/10/toggle-active", headers=headers)
    assert toggled.status_code == 200
    assert toggled.json()["active"] is False

    toggled = await profile_client.patch("/api/v1/users/10/toggle-active", headers=headers)
    assert toggled.json()["active"] is True

    deleted = await profile_client.delete("/api/v1/users/10", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["active"] is False

    still_there = await profile_client.get("/api/v1/users/10", headers=INTERNAL_HEADERS)
    assert still_there.status_code == 200
    assert published(bus)[-1][0] == "USER_DELETED"


@pytest.mark.asyncio
async def test_list_and_search_users(profile_client: AsyncClient, db_session) -> None:
    admin = await insert_user(db_session, 1, role="admin", name="Alba")
    client = await insert_user(db_session, 10, name="Bruno")
    await insert_user(db_session, 20, role="practitioner", name="Carla")
    await insert_user(db_session, 21, role="practitioner", name="Dario", active=False)

    forbidden = await profile_client.get("/api/v1/users", headers=auth_headers_for(client))
    assert forbidden.status_code == 403

    headers = auth_headers_for(admin)
    everyone = await profile_client.get("/api/v1/users", headers=headers)
    assert everyone.json()["total"] == 4

    practitioners = await profile_client.get(
        "/api/v1/users", params={"role": "practitioner", "active": "true"}, headers=headers
    )
    assert [u["name"] for u in practitioners.json()["items"]] == ["Carla"]

    search = await profile_client.get("/api/v1/users", params={"search": "brU"}, headers=headers)
    assert [u["id"] for u in search.json()["items"]] == [10]


@pytest.mark.asyncio
async def test_role_and_email_lookups(profile_client: AsyncClient, db_session) -> None:
    client = await insert_user(db_session, 10)
    await insert_user(db_session, 20, role="practitioner")
    await insert_user(db_session, 21, role="practitioner", active=False)

    by_role = await profile_client.get("/api/v1/users/role/practitioner", headers=INTERNAL_HEADERS)
    assert by_role.status_code == 200
    assert [u["id"] for u in by_role.json()] == [20]

    denied = await profile_client.get(
        "/api/v1/users/role/practitioner", headers=auth_headers_for(client)
    )
    assert denied.status_code == 403

    available = await profile_client.get(
        "/api/v1/users/practitioners/available", headers=auth_headers_for(client)
    )
    assert [u["id"] for u in available.json()] == [20]

    by_email = await profile_client.get(
        "/api/v1/users/by-email/user20@example.com", headers=INTERNAL_HEADERS
    )
    assert by_email.json()["id"] == 20

    unknown = await profile_client.get(
        "/api/v1/users/by-email/none@example.com", headers=INTERNAL_HEADERS
    )
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_sync_endpoints(profile_client: AsyncClient, db_session, identity) -> None:
    identity.accounts = [
        {"id": 50, "email": "fifty@example.com", "role": "client", "name": "F", "surname": "Y",
         "active": True},
        {"id": 51, "email": "fiftyone@example.com", "role": "practitioner", "name": "G",
         "surname": "Z", "active": True},
    ]
    client = await insert_user(db_session, 10)

    denied = await profile_client.post("/api/v1/users/sync", headers=auth_headers_for(client))
    assert denied.status_code == 403

    one = await profile_client.post("/api/v1/users/sync/50", headers=INTERNAL_HEADERS)
    assert one.status_code == 200
    assert one.json()["email"] == "fifty@example.com"

    summary = await profile_client.post("/api/v1/users/sync", headers=INTERNAL_HEADERS)
    assert summary.status_code == 200
    assert summary.json() == {"synchronized": 1, "existing": 1, "total": 2}

    missing = await profile_client.post("/api/v1/users/sync/77", headers=INTERNAL_HEADERS)
    assert missing.status_code == 404
