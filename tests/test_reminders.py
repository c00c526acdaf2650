"""Tests for the periodic appointment sweeps."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.core.clock import utcnow
from app.core.realtime import RoomManager
from app.models.appointments import appointments
from app.services.event_publisher import EventPublisher
from app.services.notification_service import NotificationService
from app.services.reminder_service import ReminderService, SweepJobs
from tests.factories import insert_appointment, published


@pytest.fixture
def reminders(db_session, bus, rooms: RoomManager) -> ReminderService:
    return ReminderService(db_session, EventPublisher(bus), NotificationService(rooms))


async def _status(db_session, appointment_id: int) -> dict:
    result = await db_session.execute(
        select(appointments).where(appointments.c.id == appointment_id)
    )
    return dict(result.mappings().one())


@pytest.mark.asyncio
async def test_day_ahead_reminder_is_sent_once(db_session, bus, reminders: ReminderService) -> None:
    now = utcnow()
    appointment = await insert_appointment(db_session, scheduled_at=now + timedelta(hours=20))

    counts = await reminders.send_reminders(now=now)
    assert counts == {"24h": 1, "2h": 0}
    assert published(bus)[0][0] == "CITA_REMINDER"
    assert published(bus)[0][1]["reminder_type"] == "24h"

    db_session.expire_all()
    row = await _status(db_session, appointment["id"])
    assert row["reminder_sent"] is True
    assert row["reminder_sent_at"] == now

    counts = await reminders.send_reminders(now=now + timedelta(minutes=30))
    assert counts == {"24h": 0, "2h": 0}
    assert bus.publish.await_count == 1


@pytest.mark.asyncio
async def test_short_reminder_repeats_inside_its_window(
    db_session, bus, reminders: ReminderService
) -> None:
    now = utcnow()
    await insert_appointment(
        db_session,
        scheduled_at=now + timedelta(hours=1),
        status="confirmed",
        reminder_sent=True,
    )

    assert await reminders.send_reminders(now=now) == {"24h": 0, "2h": 1}
    assert await reminders.send_reminders(now=now + timedelta(minutes=30)) == {"24h": 0, "2h": 1}
    assert [payload["reminder_type"] for _, payload in published(bus)] == ["2h", "2h"]


@pytest.mark.asyncio
async def test_reminders_skip_inactive_and_distant_appointments(
    db_session, bus, reminders: ReminderService
) -> None:
    now = utcnow()
    await insert_appointment(db_session, scheduled_at=now + timedelta(hours=5), status="cancelled")
    await insert_appointment(db_session, scheduled_at=now + timedelta(hours=30))
    await insert_appointment(db_session, scheduled_at=now - timedelta(hours=1))

    assert await reminders.send_reminders(now=now) == {"24h": 0, "2h": 0}
    bus.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_reminder_pushes_notification_to_client_room(
    db_session, rooms: RoomManager, reminders: ReminderService
) -> None:
    socket = AsyncMock()
    rooms.join(socket, "client:10")
    now = utcnow()
    await insert_appointment(db_session, client_id=10, scheduled_at=now + timedelta(hours=20))

    await reminders.send_reminders(now=now)

    frame = json.loads(socket.send_text.await_args.args[0])
    assert frame["event"] == "notification"
    assert frame["data"]["type"] == "reminder"
    assert frame["data"]["reminder_type"] == "24h"


@pytest.mark.asyncio
async def test_past_pending_appointment_becomes_no_show(
    db_session, bus, reminders: ReminderService
) -> None:
    now = utcnow()
    stale = await insert_appointment(db_session, scheduled_at=now - timedelta(hours=3))
    recent = await insert_appointment(db_session, scheduled_at=now - timedelta(hours=1))
    done = await insert_appointment(
        db_session, scheduled_at=now - timedelta(hours=5), status="completed"
    )

    assert await reminders.mark_no_shows(now=now) == 1

    db_session.expire_all()
    assert (await _status(db_session, stale["id"]))["status"] == "no_show"
    assert (await _status(db_session, recent["id"]))["status"] == "pending"
    assert (await _status(db_session, done["id"]))["status"] == "completed"

    event_type, payload = published(bus)[0]
    assert event_type == "CITA_UPDATED"
    assert payload["status"] == "no_show"
    assert payload["previous_status"] == "pending"


@pytest.mark.asyncio
async def test_purge_removes_only_old_cancelled_appointments(
    db_session, reminders: ReminderService
) -> None:
    now = utcnow()
    old = now - timedelta(days=200)
    await insert_appointment(db_session, status="cancelled", created_at=old)
    kept_recent = await insert_appointment(
        db_session, status="cancelled", created_at=now - timedelta(days=10)
    )
    kept_active = await insert_appointment(db_session, status="completed", created_at=old)

    assert await reminders.purge_cancelled(now=now) == 1

    remaining = (await db_session.execute(select(appointments.c.id))).scalars().all()
    assert sorted(remaining) == sorted([kept_recent["id"], kept_active["id"]])


@pytest.mark.asyncio
async def test_sweep_jobs_open_their_own_session(db_session, session_factory, bus, rooms) -> None:
    await insert_appointment(db_session, scheduled_at=utcnow() - timedelta(hours=3))
    jobs = SweepJobs(bus, NotificationService(rooms), session_factory=session_factory)

    assert await jobs.no_shows() == 1
    assert await jobs.purge() == 0


@pytest.mark.asyncio
async def test_sweep_failure_is_logged_not_raised(bus, rooms) -> None:
    def broken_factory():
        raise RuntimeError("database unavailable")

    jobs = SweepJobs(bus, NotificationService(rooms), session_factory=broken_factory)
    assert await jobs.reminders() is None
    assert await jobs.relay_outbox() is None
