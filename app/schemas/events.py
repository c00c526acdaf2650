"""Domain event envelope shared by every service."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Exchange(str, Enum):
    """Topic exchanges (one stream each)."""

    USER = "user.events"
    AUTH = "auth.events"
    APPOINTMENT = "cita.events"
    NOTIFICATION = "notification.events"


class EventType(str, Enum):
    """Event type carried in the envelope."""

    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_LOGIN = "USER_LOGIN"
    CITA_CREATED = "CITA_CREATED"
    CITA_UPDATED = "CITA_UPDATED"
    CITA_CANCELLED = "CITA_CANCELLED"
    CITA_RESCHEDULED = "CITA_RESCHEDULED"
    CITA_REMINDER = "CITA_REMINDER"


# Routing key each event type is published with
ROUTING_KEYS: dict[EventType, tuple[Exchange, str]] = {
    EventType.USER_CREATED: (Exchange.USER, "user.created"),
    EventType.USER_UPDATED: (Exchange.USER, "user.updated"),
    EventType.USER_DELETED: (Exchange.USER, "user.deleted"),
    EventType.USER_LOGIN: (Exchange.AUTH, "auth.login"),
    EventType.CITA_CREATED: (Exchange.APPOINTMENT, "cita.created"),
    EventType.CITA_UPDATED: (Exchange.APPOINTMENT, "cita.updated"),
    EventType.CITA_CANCELLED: (Exchange.APPOINTMENT, "cita.cancelled"),
    EventType.CITA_RESCHEDULED: (Exchange.APPOINTMENT, "cita.rescheduled"),
    EventType.CITA_REMINDER: (Exchange.NOTIFICATION, "cita.reminder"),
}


class EventEnvelope(BaseModel):
    """Wire format of every published event: ``{eventType, timestamp, data}``."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="eventType")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(cls, event_type: EventType | str, data: dict[str, Any]) -> "EventEnvelope":
        """Create an envelope stamped with the current time."""
        value = event_type.value if isinstance(event_type, EventType) else event_type
        return cls(event_type=value, data=data)

    def to_json(self) -> str:
        """Serialize with the wire field names."""
        return self.model_dump_json(by_alias=True)
