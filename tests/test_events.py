"""Tests for the Redis Streams event bus."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ResponseError

from app.config import settings
from app.core.events import EventBus, QueueBinding, topic_matches
from app.schemas.events import EventEnvelope, EventType

BINDING = QueueBinding("profile.user.created", "user.events", "user.created")


def make_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.xadd.return_value = "1-0"
    redis.xautoclaim.return_value = ["0-0", [], []]
    redis.xreadgroup.return_value = []
    return redis


def entry(entry_id: str, routing_key: str, **data) -> tuple[str, dict[str, str]]:
    body = EventEnvelope.build(EventType.USER_CREATED, data).to_json()
    return entry_id, {"routing_key": routing_key, "body": body}


@pytest.mark.parametrize(
    "pattern,routing_key,expected",
    [
        ("user.created", "user.created", True),
        ("user.created", "user.updated", False),
        ("auth.*", "auth.login", True),
        ("auth.*", "auth.login.failed", False),
        ("auth.*", "auth", False),
        ("cita.#", "cita", True),
        ("cita.#", "cita.reminder.24h", True),
        ("#.cancelled", "cita.cancelled", True),
        ("*.created", "user.updated", False),
    ],
)
def test_topic_matches(pattern: str, routing_key: str, expected: bool) -> None:
    assert topic_matches(pattern, routing_key) is expected


@pytest.mark.asyncio
async def test_publish_appends_envelope_to_exchange_stream() -> None:
    redis = make_redis()
    bus = EventBus(redis, prefix="test", consumer_name="c1")

    entry_id = await bus.publish(EventType.USER_LOGIN, {"user_id": 3})

    assert entry_id == "1-0"
    stream, fields = redis.xadd.await_args.args
    assert stream == "test:auth.events"
    assert fields["routing_key"] == "auth.login"
    body = json.loads(fields["body"])
    assert body["eventType"] == "USER_LOGIN"
    assert body["data"] == {"user_id": 3}
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed() -> None:
    redis = make_redis()
    redis.xadd.side_effect = ConnectionError("redis down")
    bus = EventBus(redis, prefix="test", consumer_name="c1")

    assert await bus.publish(EventType.USER_CREATED, {"id": 1}) is None

    with pytest.raises(ConnectionError):
        await bus.publish_raw("user.events", "user.created", "{}")


@pytest.mark.asyncio
async def test_handled_entry_is_acknowledged() -> None:
    redis = make_redis()
    redis.xreadgroup.return_value = [
        ("test:user.events", [entry("5-0", "user.created", id=1, email="a@example.com")])
    ]
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    handler = AsyncMock()
    consumer = bus.subscribe(BINDING, handler)

    assert await consumer.process_once() == 1

    redis.xgroup_create.assert_awaited_once_with(
        "test:user.events", "profile.user.created", id="0", mkstream=True
    )
    envelope = handler.await_args.args[0]
    assert envelope.event_type == "USER_CREATED"
    assert envelope.data["email"] == "a@example.com"
    redis.xack.assert_awaited_once_with("test:user.events", "profile.user.created", "5-0")


@pytest.mark.asyncio
async def test_failed_handler_leaves_entry_pending() -> None:
    redis = make_redis()
    redis.xreadgroup.return_value = [("test:user.events", [entry("5-0", "user.created", id=1)])]
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    consumer = bus.subscribe(BINDING, AsyncMock(side_effect=RuntimeError("db down")))

    assert await consumer.process_once() == 0
    redis.xack.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_entries_are_redelivered() -> None:
    redis = make_redis()
    redis.xautoclaim.return_value = [
        "0-0",
        [entry("4-0", "user.created", id=1), ("3-0", None)],
        [],
    ]
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    handler = AsyncMock()
    consumer = bus.subscribe(BINDING, handler)

    assert await consumer.process_once() == 1
    assert handler.await_count == 1
    redis.xack.assert_awaited_once_with("test:user.events", "profile.user.created", "4-0")


@pytest.mark.asyncio
async def test_unmatched_routing_key_is_acknowledged_without_handling() -> None:
    redis = make_redis()
    redis.xreadgroup.return_value = [("test:user.events", [entry("6-0", "user.updated", id=1)])]
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    handler = AsyncMock()
    consumer = bus.subscribe(BINDING, handler)

    assert await consumer.process_once() == 1
    handler.assert_not_awaited()
    redis.xack.assert_awaited_once()


@pytest.mark.asyncio
async def test_poison_entry_is_dead_lettered(monkeypatch) -> None:
    monkeypatch.setattr(settings, "event_max_deliveries", 3)
    redis = make_redis()
    redis.xautoclaim.return_value = ["0-0", [entry("4-0", "user.created", id=1)], []]
    redis.xpending_range.return_value = [{"message_id": "4-0", "times_delivered": 4}]
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    handler = AsyncMock()
    consumer = bus.subscribe(BINDING, handler)

    assert await consumer.process_once() == 1
    handler.assert_not_awaited()
    assert redis.xadd.await_args.args[0] == "test:user.events:dead"
    redis.xack.assert_awaited_once_with("test:user.events", "profile.user.created", "4-0")


@pytest.mark.asyncio
async def test_existing_group_is_reused() -> None:
    redis = make_redis()
    redis.xgroup_create.side_effect = ResponseError("BUSYGROUP Consumer Group name already exists")
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    consumer = bus.subscribe(BINDING, AsyncMock())

    await consumer.ensure_group()
    await consumer.ensure_group()
    assert redis.xgroup_create.await_count == 1


@pytest.mark.asyncio
async def test_other_group_errors_propagate() -> None:
    redis = make_redis()
    redis.xgroup_create.side_effect = ResponseError("WRONGTYPE")
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    consumer = bus.subscribe(BINDING, AsyncMock())

    with pytest.raises(ResponseError):
        await consumer.ensure_group()


@pytest.mark.asyncio
async def test_start_and_stop_consumer_tasks() -> None:
    redis = make_redis()
    bus = EventBus(redis, prefix="test", consumer_name="c1")
    bus.subscribe(BINDING, AsyncMock())

    await bus.start()
    assert len(bus._tasks) == 1
    await bus.stop()
    assert bus._tasks == []
