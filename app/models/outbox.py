"""Transactional outbox for domain events."""

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, func, text

metadata = MetaData()

event_outbox = Table(
    "event_outbox",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("exchange", String(100), nullable=False),
    Column("routing_key", String(100), nullable=False),
    Column("event_type", String(50), nullable=False),
    Column("payload", Text, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("published_at", DateTime, index=True),
    Column("attempts", Integer, nullable=False, server_default=text("0")),
    Column("last_error", Text),
)
