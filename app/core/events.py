"""Durable topic event bus on Redis Streams.

Every exchange is one stream (``<prefix>:<exchange>``). A queue is a consumer
group on that stream, bound to a routing-key pattern with topic semantics
(``*`` matches exactly one dot-separated word, ``#`` zero or more).

Delivery is at-least-once: an entry is acknowledged only after its handler
returns. A failing handler leaves the entry pending, and pending entries idle
for longer than the redelivery delay are reclaimed and handed to the handler
again.
"""

import asyncio
import os
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ResponseError

from app.config import settings
from app.core.redis_client import get_async_redis_client
from app.schemas.events import ROUTING_KEYS, EventEnvelope, EventType, Exchange

logger = structlog.get_logger()

EventHandler = Callable[[EventEnvelope], Awaitable[None]]


def topic_matches(pattern: str, routing_key: str) -> bool:
    """Match a routing key against a topic binding pattern."""
    return _match(pattern.split("."), routing_key.split("."))


def _match(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        # zero or more words
        return any(_match(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _match(rest, words[1:])
    return False


@dataclass(frozen=True)
class QueueBinding:
    """Named durable queue bound to an exchange by routing-key pattern."""

    queue: str
    exchange: str
    pattern: str


def default_consumer_name() -> str:
    """Consumer name unique per process."""
    if settings.event_consumer_name:
        return settings.event_consumer_name
    return f"{settings.service_name.value}-{socket.gethostname()}-{os.getpid()}"


class EventBus:
    """Publisher and consumer registry over one Redis connection."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        prefix: str | None = None,
        maxlen: int | None = None,
        consumer_name: str | None = None,
    ):
        self.redis = redis_client
        self.prefix = prefix or settings.event_stream_prefix
        self.maxlen = maxlen or settings.event_stream_maxlen
        self.consumer_name = consumer_name or default_consumer_name()
        self.consumers: list["Consumer"] = []
        self._tasks: list[asyncio.Task] = []

    def stream_name(self, exchange: Exchange | str) -> str:
        value = exchange.value if isinstance(exchange, Exchange) else exchange
        return f"{self.prefix}:{value}"

    async def publish_raw(self, exchange: Exchange | str, routing_key: str, body: str) -> str:
        """Append a serialized envelope to the exchange stream. Raises on failure."""
        return await self.redis.xadd(
            self.stream_name(exchange),
            {"routing_key": routing_key, "body": body},
            maxlen=self.maxlen,
            approximate=True,
        )

    async def publish(
        self,
        event_type: EventType,
        data: dict[str, Any],
        routing_key: str | None = None,
    ) -> str | None:
        """
        Publish a domain event, fire-and-forget.

        Failures are logged and swallowed so they never undo the state change
        that produced the event.

        Args:
            event_type: Event type; selects exchange and default routing key
            data: Event payload
            routing_key: Override of the default routing key

        Returns:
            Stream entry id, or None when publishing failed
        """
        exchange, default_key = ROUTING_KEYS[event_type]
        key = routing_key or default_key
        envelope = EventEnvelope.build(event_type, data)
        try:
            entry_id = await self.publish_raw(exchange, key, envelope.to_json())
        except Exception as e:
            logger.error(
                "event_publish_failed",
                exchange=exchange.value,
                routing_key=key,
                event_type=event_type.value,
                error=str(e),
            )
            return None

        logger.debug("event_published", exchange=exchange.value, routing_key=key, entry_id=entry_id)
        return entry_id

    def subscribe(self, binding: QueueBinding, handler: EventHandler) -> "Consumer":
        """Register a handler for a queue; call ``start()`` to begin consuming."""
        consumer = Consumer(self, binding, handler)
        self.consumers.append(consumer)
        return consumer

    async def start(self) -> None:
        """Declare every queue and start one consuming task per consumer."""
        for consumer in self.consumers:
            await consumer.ensure_group()
            self._tasks.append(asyncio.create_task(consumer.run(), name=consumer.binding.queue))
        logger.info("event_consumers_started", queues=[c.binding.queue for c in self.consumers])

    async def stop(self) -> None:
        """Stop consuming tasks."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("event_consumers_stopped")


class Consumer:
    """One durable queue: a consumer group reading an exchange stream."""

    def __init__(self, bus: EventBus, binding: QueueBinding, handler: EventHandler):
        self.bus = bus
        self.binding = binding
        self.handler = handler
        self.stream = bus.stream_name(binding.exchange)
        self._group_ready = False

    @property
    def group(self) -> str:
        return self.binding.queue

    async def ensure_group(self) -> None:
        """Create the consumer group from the start of the stream if missing."""
        if self._group_ready:
            return
        try:
            await self.bus.redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("event_queue_declared", queue=self.group, stream=self.stream)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._group_ready = True

    async def process_once(self, block_ms: int | None = None) -> int:
        """
        Redeliver stale pending entries, then read and dispatch new ones.

        Args:
            block_ms: How long to wait for new entries; None means do not block

        Returns:
            Number of entries acknowledged
        """
        await self.ensure_group()
        acked = 0

        for entry_id, fields in await self._reclaim():
            if await self._handle(entry_id, fields, redelivered=True):
                acked += 1

        response = await self.bus.redis.xreadgroup(
            self.group,
            self.bus.consumer_name,
            {self.stream: ">"},
            count=settings.event_batch_size,
            block=block_ms,
        )
        for _stream, entries in response or []:
            for entry_id, fields in entries:
                if await self._handle(entry_id, fields, redelivered=False):
                    acked += 1

        return acked

    async def run(self) -> None:
        """Consume until cancelled."""
        while True:
            try:
                await self.process_once(block_ms=settings.event_block_ms)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("event_consumer_error", queue=self.group, error=str(e))
                await asyncio.sleep(1)

    async def _reclaim(self) -> list[tuple[str, dict[str, str]]]:
        result = await self.bus.redis.xautoclaim(
            self.stream,
            self.group,
            self.bus.consumer_name,
            min_idle_time=settings.event_redelivery_delay_ms,
            start_id="0-0",
            count=settings.event_batch_size,
        )
        if not result or len(result) < 2:
            return []
        # Entries trimmed from the stream come back without fields
        return [(entry_id, fields) for entry_id, fields in result[1] if fields]

    async def _handle(self, entry_id: str, fields: dict[str, str], redelivered: bool) -> bool:
        routing_key = fields.get("routing_key", "")
        if not topic_matches(self.binding.pattern, routing_key):
            await self.bus.redis.xack(self.stream, self.group, entry_id)
            return True

        if redelivered and settings.event_max_deliveries > 0:
            if await self._deliveries(entry_id) > settings.event_max_deliveries:
                await self._dead_letter(entry_id, fields)
                return True

        try:
            envelope = EventEnvelope.model_validate_json(fields.get("body", ""))
            await self.handler(envelope)
        except Exception as e:
            # Left pending, reclaimed after the redelivery delay
            logger.warning(
                "event_handler_failed",
                queue=self.group,
                routing_key=routing_key,
                entry_id=entry_id,
                error=str(e),
            )
            return False

        await self.bus.redis.xack(self.stream, self.group, entry_id)
        return True

    async def _deliveries(self, entry_id: str) -> int:
        pending = await self.bus.redis.xpending_range(
            self.stream, self.group, min=entry_id, max=entry_id, count=1
        )
        if not pending:
            return 0
        return int(pending[0]["times_delivered"])

    async def _dead_letter(self, entry_id: str, fields: dict[str, str]) -> None:
        await self.bus.redis.xadd(
            f"{self.stream}:dead",
            {**fields, "queue": self.group, "entry_id": entry_id},
            maxlen=self.bus.maxlen,
            approximate=True,
        )
        await self.bus.redis.xack(self.stream, self.group, entry_id)
        logger.error("event_dead_lettered", queue=self.group, entry_id=entry_id)


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Process-wide event bus on the shared async Redis client."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus(get_async_redis_client())
    return _event_bus


async def close_event_bus() -> None:
    global _event_bus
    if _event_bus is not None:
        await _event_bus.stop()
        _event_bus = None
