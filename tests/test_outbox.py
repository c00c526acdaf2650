"""Tests for event delivery through the transactional outbox."""

import asyncio
import json
from datetime import date

import pytest
from sqlalchemy import select

from app.config import EventDeliveryMode
from app.core.locks import slot_key, slot_lock
from app.models.outbox import event_outbox
from app.schemas.events import EventType
from app.services.event_publisher import EventPublisher, OutboxRelay


async def outbox_rows(db_session) -> list[dict]:
    result = await db_session.execute(select(event_outbox).order_by(event_outbox.c.id))
    return [dict(row) for row in result.mappings().all()]


@pytest.mark.asyncio
async def test_direct_mode_publishes_after_dispatch(db_session, bus) -> None:
    publisher = EventPublisher(bus, EventDeliveryMode.DIRECT)
    await publisher.record(db_session, EventType.CITA_CREATED, {"id": 1})
    bus.publish.assert_not_awaited()

    assert await publisher.dispatch() == 1
    bus.publish.assert_awaited_once_with(EventType.CITA_CREATED, {"id": 1})
    assert await outbox_rows(db_session) == []


@pytest.mark.asyncio
async def test_discarded_events_are_never_sent(db_session, bus) -> None:
    publisher = EventPublisher(bus, EventDeliveryMode.DIRECT)
    await publisher.record(db_session, EventType.CITA_CREATED, {"id": 1})
    publisher.discard()

    assert await publisher.dispatch() == 0
    bus.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_outbox_mode_writes_rows_in_the_transaction(db_session, bus) -> None:
    publisher = EventPublisher(bus, EventDeliveryMode.OUTBOX)
    await publisher.record(db_session, EventType.CITA_CANCELLED, {"id": 7})
    await db_session.commit()

    assert await publisher.dispatch() == 0
    bus.publish.assert_not_awaited()

    rows = await outbox_rows(db_session)
    assert len(rows) == 1
    assert rows[0]["exchange"] == "cita.events"
    assert rows[0]["routing_key"] == "cita.cancelled"
    assert rows[0]["published_at"] is None
    body = json.loads(rows[0]["payload"])
    assert body["eventType"] == "CITA_CANCELLED"
    assert body["data"] == {"id": 7}


@pytest.mark.asyncio
async def test_relay_publishes_in_order(db_session, bus) -> None:
    publisher = EventPublisher(bus, EventDeliveryMode.OUTBOX)
    await publisher.record(db_session, EventType.CITA_CREATED, {"id": 1})
    await publisher.record(db_session, EventType.CITA_UPDATED, {"id": 1})
    await db_session.commit()

    assert await OutboxRelay(bus).relay_once(db_session) == 2
    keys = [call.args[1] for call in bus.publish_raw.await_args_list]
    assert keys == ["cita.created", "cita.updated"]

    rows = await outbox_rows(db_session)
    assert all(row["published_at"] is not None for row in rows)
    assert await OutboxRelay(bus).relay_once(db_session) == 0


@pytest.mark.asyncio
async def test_relay_stops_at_first_failure(db_session, bus) -> None:
    publisher = EventPublisher(bus, EventDeliveryMode.OUTBOX)
    await publisher.record(db_session, EventType.CITA_CREATED, {"id": 1})
    await publisher.record(db_session, EventType.CITA_UPDATED, {"id": 1})
    await db_session.commit()

    bus.publish_raw.side_effect = ConnectionError("redis down")
    assert await OutboxRelay(bus).relay_once(db_session) == 0
    assert bus.publish_raw.await_count == 1

    first, second = await outbox_rows(db_session)
    assert first["attempts"] == 1
    assert "redis down" in first["last_error"]
    assert second["attempts"] == 0

    bus.publish_raw.side_effect = None
    assert await OutboxRelay(bus).relay_once(db_session) == 2


def test_slot_key_scopes() -> None:
    day = date(2025, 6, 1)
    assert slot_key(day) == "slot:2025-06-01:global"
    assert slot_key(day, 20) == "slot:2025-06-01:20"


@pytest.mark.asyncio
async def test_slot_lock_serializes_same_day(db_session) -> None:
    day = date(2025, 6, 1)
    order: list[str] = []

    async def worker(name: str) -> None:
        async with slot_lock(db_session, day):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order == ["a-in", "a-out", "b-in", "b-out"]
