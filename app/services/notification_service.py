"""Real-time notification fanout for appointment changes."""

from datetime import date
from typing import Any

import structlog

from app.core.clock import clinic_date, to_clinic_time
from app.core.realtime import (
    STAFF_ROOM,
    RoomManager,
    client_room,
    date_room,
    practitioner_room,
)
from app.schemas.appointments import AppointmentResponse

logger = structlog.get_logger()

SLOTS_UPDATED = "horarios_updated"
APPOINTMENT_CREATED = "nueva_cita"
APPOINTMENT_ASSIGNED = "cita_asignada"
APPOINTMENT_UPDATED = "cita_actualizada"
APPOINTMENT_CANCELLED = "cita_cancelada"
NOTIFICATION = "notification"


class NotificationService:
    """
    Broadcasts appointment changes to WebSocket rooms.

    Everything here is best effort: a failed broadcast is logged at debug
    level and never reaches the caller.
    """

    def __init__(self, rooms: RoomManager):
        self.rooms = rooms

    async def _emit(self, room: str, event: str, data: dict[str, Any]) -> None:
        try:
            await self.rooms.emit(room, event, data)
        except Exception as e:
            logger.debug("realtime_broadcast_failed", room=room, realtime_event=event, error=str(e))

    async def slots_changed(self, day: date) -> None:
        await self._emit(date_room(day), SLOTS_UPDATED, {"date": day.isoformat()})

    async def appointment_created(self, appointment: dict[str, Any]) -> None:
        await self.slots_changed(clinic_date(appointment["scheduled_at"]))
        await self._emit(
            STAFF_ROOM, APPOINTMENT_CREATED, {"appointment": appointment_payload(appointment)}
        )

    async def appointment_assigned(self, appointment: dict[str, Any]) -> None:
        data = {"appointment": appointment_payload(appointment)}
        await self._emit(client_room(appointment["client_id"]), APPOINTMENT_ASSIGNED, data)
        await self._emit(STAFF_ROOM, APPOINTMENT_ASSIGNED, data)
        await self._emit(
            practitioner_room(appointment["practitioner_id"]), APPOINTMENT_ASSIGNED, data
        )

    async def appointment_updated(self, appointment: dict[str, Any], **extra: Any) -> None:
        data = {"appointment": appointment_payload(appointment), **extra}
        await self._emit(client_room(appointment["client_id"]), APPOINTMENT_UPDATED, data)
        await self._emit(STAFF_ROOM, APPOINTMENT_UPDATED, data)
        if appointment.get("practitioner_id"):
            await self._emit(
                practitioner_room(appointment["practitioner_id"]), APPOINTMENT_UPDATED, data
            )

    async def appointment_cancelled(
        self,
        appointment: dict[str, Any],
        client: dict[str, Any] | None = None,
    ) -> None:
        await self.slots_changed(clinic_date(appointment["scheduled_at"]))
        data = {"appointment": appointment_payload(appointment), "client": client_contact(client)}
        await self._emit(client_room(appointment["client_id"]), APPOINTMENT_CANCELLED, data)
        await self._emit(STAFF_ROOM, APPOINTMENT_CANCELLED, data)

    async def reminder(self, appointment: dict[str, Any], reminder_type: str) -> None:
        local = to_clinic_time(appointment["scheduled_at"])
        await self._emit(
            client_room(appointment["client_id"]),
            NOTIFICATION,
            {
                "type": "reminder",
                "reminder_type": reminder_type,
                "appointment_id": appointment["id"],
                "scheduled_at": appointment["scheduled_at"].isoformat(),
                "message": f"Reminder: you have an appointment on {local:%Y-%m-%d at %H:%M}",
            },
        )


def appointment_payload(appointment: dict[str, Any]) -> dict[str, Any]:
    """JSON-safe view of an appointment row, used in events and frames."""
    return AppointmentResponse.model_validate(appointment).model_dump(mode="json")


def client_contact(client: dict[str, Any] | None) -> dict[str, Any] | None:
    if not client:
        return None
    return {
        "id": client.get("id"),
        "name": client.get("name"),
        "surname": client.get("surname"),
        "email": client.get("email"),
        "phone": client.get("phone"),
    }
