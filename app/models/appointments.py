"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
    text,
)

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Ownership / references (users live in another service, no FK)
    Column("client_id", Integer, nullable=False, index=True),
    Column("practitioner_id", Integer, nullable=True, index=True),
    # Appointment details
    Column("consultation_type", String(20), nullable=False),
    Column("category", String(50), nullable=False),
    Column("scheduled_at", DateTime, nullable=False, index=True),
    Column("duration_minutes", Integer, nullable=False, server_default=text("60")),
    Column("details", Text),
    # Status management
    Column("status", String(20), nullable=False, server_default=text("'pending'")),
    Column("priority", String(20), nullable=False, server_default=text("'medium'")),
    # Cancellation
    Column("cancellation_reason", Text),
    Column("cancelled_at", DateTime),
    # Reschedule audit
    Column("previous_scheduled_at", DateTime),
    Column("reschedule_reason", Text),
    Column("rescheduled_at", DateTime),
    # Assignment audit
    Column("observations", Text),
    Column("assigned_at", DateTime),
    Column("practitioner_notes", Text),
    # Reminders
    Column("reminder_sent", Boolean, nullable=False, server_default=text("false")),
    Column("reminder_sent_at", DateTime),
    Column("estimated_cost", Numeric(10, 2)),
    # Audit fields
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "consultation_type IN ('general', 'control', 'urgent')",
        name="appointments_consultation_type_check",
    ),
    CheckConstraint(
        "priority IN ('low', 'medium', 'high', 'urgent')",
        name="appointments_priority_check",
    ),
    Index("ix_appointments_status_scheduled_at", "status", "scheduled_at"),
)
