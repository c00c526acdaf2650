"""Slot locks serializing conflict checks with their writes."""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def slot_key(day: date, practitioner_id: int | None = None) -> str:
    scope = str(practitioner_id) if practitioner_id is not None else "global"
    return f"slot:{day.isoformat()}:{scope}"


def _local_lock(key: str) -> asyncio.Lock:
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    return lock


@asynccontextmanager
async def slot_lock(
    db: AsyncSession,
    day: date,
    practitioner_id: int | None = None,
) -> AsyncIterator[None]:
    """
    Hold the lock for a calendar day (and practitioner) until the block exits.

    Within a process an asyncio lock serializes callers. On PostgreSQL a
    transaction-scoped advisory lock additionally serializes processes; it is
    released when the session commits or rolls back, so the caller must commit
    inside the block.
    """
    key = slot_key(day, practitioner_id)
    lock = _local_lock(key)
    async with lock:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(
                text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
                {"key": key},
            )
        yield
