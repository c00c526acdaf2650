"""Event publication tied to the request transaction.

In ``direct`` mode events are buffered while the transaction runs and
published after commit, fire-and-forget. In ``outbox`` mode they are written to
``event_outbox`` inside the same transaction and a relay job publishes them.
"""

from typing import Any

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import EventDeliveryMode, settings
from app.core.clock import utcnow
from app.core.events import EventBus
from app.models.outbox import event_outbox
from app.schemas.events import ROUTING_KEYS, EventEnvelope, EventType

logger = structlog.get_logger()


class EventPublisher:
    """Collects the events of one unit of work."""

    def __init__(self, bus: EventBus, mode: EventDeliveryMode | None = None):
        self.bus = bus
        self.mode = mode or settings.event_delivery_mode
        self._pending: list[tuple[EventType, dict[str, Any]]] = []

    async def record(self, db: AsyncSession, event_type: EventType, data: dict[str, Any]) -> None:
        """Record an event before the transaction commits."""
        if self.mode == EventDeliveryMode.OUTBOX:
            exchange, routing_key = ROUTING_KEYS[event_type]
            envelope = EventEnvelope.build(event_type, data)
            await db.execute(
                insert(event_outbox).values(
                    exchange=exchange.value,
                    routing_key=routing_key,
                    event_type=event_type.value,
                    payload=envelope.to_json(),
                    created_at=utcnow(),
                    attempts=0,
                )
            )
        else:
            self._pending.append((event_type, data))

    async def dispatch(self) -> int:
        """Publish buffered events after commit. Returns how many were sent."""
        pending, self._pending = self._pending, []
        sent = 0
        for event_type, data in pending:
            if await self.bus.publish(event_type, data) is not None:
                sent += 1
        return sent

    def discard(self) -> None:
        """Forget buffered events (the transaction rolled back)."""
        self._pending.clear()


class OutboxRelay:
    """Publishes unpublished outbox rows in insertion order."""

    def __init__(self, bus: EventBus, batch_size: int = 100):
        self.bus = bus
        self.batch_size = batch_size

    async def relay_once(self, db: AsyncSession) -> int:
        """
        Drain one batch of the outbox.

        Stops at the first failure so events keep their order; the failed row
        records the error and is retried on the next run.

        Returns:
            Number of rows published
        """
        stmt = (
            select(event_outbox)
            .where(event_outbox.c.published_at.is_(None))
            .order_by(event_outbox.c.id)
            .limit(self.batch_size)
        )
        rows = (await db.execute(stmt)).mappings().all()

        published = 0
        for row in rows:
            try:
                await self.bus.publish_raw(row["exchange"], row["routing_key"], row["payload"])
            except Exception as e:
                await db.execute(
                    update(event_outbox)
                    .where(event_outbox.c.id == row["id"])
                    .values(attempts=row["attempts"] + 1, last_error=str(e)[:1000])
                )
                logger.error("event_publish_failed", outbox_id=row["id"], error=str(e))
                break

            await db.execute(
                update(event_outbox)
                .where(event_outbox.c.id == row["id"])
                .values(published_at=utcnow(), attempts=row["attempts"] + 1)
            )
            published += 1

        await db.commit()
        if published:
            logger.info("outbox_relayed", published=published)
        return published
