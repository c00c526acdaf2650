"""Appointment service: booking rules, conflict detection and state changes."""

from collections.abc import Collection
from datetime import date, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, func, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import LeadTimePolicy, settings
from app.core.clock import (
    clinic_date,
    clinic_wall_time,
    day_bounds,
    to_clinic_time,
    to_utc_naive,
    utcnow,
)
from app.core.exceptions import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
)
from app.core.locks import slot_lock
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    AvailabilityResponse,
    PractitionerAssignment,
)
from app.schemas.events import EventType
from app.schemas.users import STAFF_ROLES, UserRole
from app.services.appointment_states import (
    ACTIVE_STATE_VALUES,
    ensure_active,
    ensure_transition,
)
from app.services.directory_client import ProfileClient
from app.services.event_publisher import EventPublisher
from app.services.notification_service import NotificationService, appointment_payload

logger = structlog.get_logger()


def appointment_end(appointment: dict[str, Any]) -> datetime:
    return appointment["scheduled_at"] + timedelta(minutes=appointment["duration_minutes"])


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap: touching windows do not conflict."""
    return start < other_end and end > other_start


class AppointmentService:
    """Service for managing appointments."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher,
        notifier: NotificationService,
        profiles: ProfileClient,
    ):
        """Initialize service with its collaborators."""
        self.db = db
        self.publisher = publisher
        self.notifier = notifier
        self.profiles = profiles

    # Queries

    async def _load(self, appointment_id: int) -> dict[str, Any]:
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Appointment not found")
        return dict(row)

    @staticmethod
    def _check_access(appointment: dict[str, Any], actor: dict[str, Any]) -> None:
        if actor["role"] == UserRole.CLIENT.value and appointment["client_id"] != actor["id"]:
            raise ForbiddenException("Access denied to this appointment")

    async def get_appointment(self, appointment_id: int, actor: dict[str, Any]) -> dict[str, Any]:
        """
        Get appointment by ID.

        Clients only see their own appointments; staff and practitioners see all.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If a client asks for someone else's appointment
        """
        appointment = await self._load(appointment_id)
        self._check_access(appointment, actor)
        return appointment

    async def list_appointments(
        self,
        filters: AppointmentFilters,
        actor: dict[str, Any],
    ) -> AppointmentListResponse:
        """
        List appointments with filtering, sorting and pagination.

        Clients are always restricted to their own appointments.
        """
        conditions = []

        client_id = filters.client_id
        if actor["role"] == UserRole.CLIENT.value:
            client_id = actor["id"]
        if client_id:
            conditions.append(appointments.c.client_id == client_id)

        if filters.practitioner_id:
            conditions.append(appointments.c.practitioner_id == filters.practitioner_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.consultation_type:
            conditions.append(
                appointments.c.consultation_type == filters.consultation_type.value
            )

        if filters.from_date:
            conditions.append(appointments.c.scheduled_at >= to_utc_naive(filters.from_date))

        if filters.to_date:
            conditions.append(appointments.c.scheduled_at <= to_utc_naive(filters.to_date))

        where = and_(true(), *conditions)

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        sort_column = appointments.c[filters.sort_by]
        order = sort_column.desc() if filters.sort_order == "desc" else sort_column.asc()
        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(where)
            .order_by(order, appointments.c.id)
            .limit(filters.page_size)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).mappings().all()

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[AppointmentResponse.model_validate(dict(row)) for row in rows],
        )

    async def list_for_client(self, client_id: int, actor: dict[str, Any]) -> list[dict[str, Any]]:
        if actor["role"] == UserRole.CLIENT.value and actor["id"] != client_id:
            raise ForbiddenException("You can only view your own appointments")
        stmt = (
            select(appointments)
            .where(appointments.c.client_id == client_id)
            .order_by(appointments.c.scheduled_at.desc())
        )
        return [dict(row) for row in (await self.db.execute(stmt)).mappings().all()]

    async def list_for_practitioner(
        self, practitioner_id: int, actor: dict[str, Any]
    ) -> list[dict[str, Any]]:
        if actor["role"] == UserRole.CLIENT.value:
            raise ForbiddenException("Access denied")
        if actor["role"] == UserRole.PRACTITIONER.value and actor["id"] != practitioner_id:
            raise ForbiddenException("You can only view your own schedule")
        stmt = (
            select(appointments)
            .where(appointments.c.practitioner_id == practitioner_id)
            .order_by(appointments.c.scheduled_at.asc())
        )
        return [dict(row) for row in (await self.db.execute(stmt)).mappings().all()]

    async def _active_on_day(
        self,
        day: date,
        practitioner_id: int | None = None,
        exclude_id: int | None = None,
    ) -> list[dict[str, Any]]:
        start, end = day_bounds(day)
        conditions = [
            appointments.c.scheduled_at >= start,
            appointments.c.scheduled_at < end,
            appointments.c.status.in_(sorted(ACTIVE_STATE_VALUES)),
        ]
        if practitioner_id is not None:
            conditions.append(appointments.c.practitioner_id == practitioner_id)
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        result = await self.db.execute(select(appointments).where(and_(*conditions)))
        return [dict(row) for row in result.mappings().all()]

    async def _ensure_slot_free(
        self,
        start: datetime,
        duration_minutes: int,
        practitioner_id: int | None = None,
        exclude_id: int | None = None,
    ) -> None:
        end = start + timedelta(minutes=duration_minutes)
        existing = await self._active_on_day(clinic_date(start), practitioner_id, exclude_id)
        for other in existing:
            if overlaps(start, end, other["scheduled_at"], appointment_end(other)):
                logger.info(
                    "appointment_slot_conflict",
                    requested_at=start.isoformat(),
                    conflicting_id=other["id"],
                    practitioner_id=practitioner_id,
                )
                raise ConflictException("The selected time slot is not available")

    async def get_availability(self, day: date) -> AvailabilityResponse:
        """
        Free slots of a clinic day.

        The grid runs in ``slot_minutes`` steps from opening to closing time. A
        slot is free when a default-length appointment starting there overlaps
        no active appointment. Slots already in the past are left out.
        """
        busy = [
            (a["scheduled_at"], appointment_end(a)) for a in await self._active_on_day(day)
        ]
        now = utcnow()
        duration = timedelta(minutes=settings.default_duration_minutes)
        step = timedelta(minutes=settings.slot_minutes)
        slot = clinic_wall_time(day, settings.clinic_opening_hour)
        closing = clinic_wall_time(day, settings.clinic_closing_hour)

        slots: list[str] = []
        while slot < closing:
            free = not any(overlaps(slot, slot + duration, s, e) for s, e in busy)
            if free and slot > now:
                slots.append(f"{to_clinic_time(slot):%H:%M}")
            slot += step

        return AvailabilityResponse(
            date=day,
            timezone=settings.clinic_timezone,
            slot_minutes=settings.slot_minutes,
            slots=slots,
        )

    # Commands

    async def _commit_and_publish(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            self.publisher.discard()
            raise
        await self.publisher.dispatch()

    async def _update(
        self,
        appointment_id: int,
        values: dict[str, Any],
        from_statuses: Collection[str],
    ) -> dict[str, Any]:
        """
        Write ``values`` only while the appointment is still in one of
        ``from_statuses``.

        The sweeps change statuses without taking the slot lock, so the state
        checked on an earlier read may be stale by the time of the write.

        Raises:
            InvalidTransitionException: The status moved on since it was read
        """
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.status.in_(sorted(from_statuses)),
                )
            )
            .values(**values, updated_at=utcnow())
            .returning(appointments)
        )
        row = (await self.db.execute(stmt)).mappings().one_or_none()
        if row is None:
            current = await self._load(appointment_id)
            raise InvalidTransitionException(current["status"], values.get("status"))
        return dict(row)

    @staticmethod
    def _ensure_pending(appointment: dict[str, Any]) -> None:
        if appointment["status"] != AppointmentStatus.PENDING.value:
            raise InvalidTransitionException(
                appointment["status"], AppointmentStatus.CONFIRMED.value
            )

    @staticmethod
    def _check_lead_time(reference: datetime, action: str) -> None:
        lead_time = timedelta(hours=settings.client_lead_time_hours)
        if reference - utcnow() < lead_time:
            raise BadRequestException(
                f"Appointments can only be {action} at least "
                f"{settings.client_lead_time_hours} hours in advance"
            )

    async def create_appointment(
        self,
        data: AppointmentCreate,
        actor: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Book a new appointment in ``pending`` state.

        Clients book for themselves; staff must name the client.

        Raises:
            BadRequestException: Past date, incomplete profile, bad client
            ConflictException: The slot overlaps another active appointment
        """
        if actor["role"] == UserRole.CLIENT.value:
            client_id = actor["id"]
        elif actor["role"] in STAFF_ROLES:
            if not data.client_id:
                raise BadRequestException("client_id is required when booking for a client")
            client_id = data.client_id
        else:
            raise ForbiddenException("Your role cannot book appointments")

        scheduled_at = to_utc_naive(data.scheduled_at)
        if scheduled_at <= utcnow():
            raise BadRequestException("Appointment date must be in the future")

        client = await self.profiles.get_user(client_id)
        if client.get("role") != UserRole.CLIENT.value:
            raise BadRequestException("Appointments can only be booked for clients")
        if not client.get("profile_complete"):
            raise BadRequestException(
                "The client profile must be complete before booking an appointment"
            )

        now = utcnow()
        async with slot_lock(self.db, clinic_date(scheduled_at)):
            await self._ensure_slot_free(scheduled_at, data.duration_minutes)

            stmt = (
                appointments.insert()
                .values(
                    client_id=client_id,
                    consultation_type=data.consultation_type.value,
                    category=data.category.value,
                    scheduled_at=scheduled_at,
                    duration_minutes=data.duration_minutes,
                    details=data.details,
                    status=AppointmentStatus.PENDING.value,
                    priority=data.priority.value,
                    estimated_cost=data.estimated_cost,
                    reminder_sent=False,
                    created_at=now,
                    updated_at=now,
                )
                .returning(appointments)
            )
            appointment = dict((await self.db.execute(stmt)).mappings().one())
            await self.publisher.record(
                self.db, EventType.CITA_CREATED, appointment_payload(appointment)
            )
            await self._commit_and_publish()

        logger.info(
            "appointment_created",
            appointment_id=appointment["id"],
            client_id=client_id,
            scheduled_at=scheduled_at.isoformat(),
        )
        await self.notifier.appointment_created(appointment)
        return appointment

    async def assign_practitioner(
        self,
        appointment_id: int,
        data: PractitionerAssignment,
    ) -> dict[str, Any]:
        """
        Assign a practitioner to a pending appointment, confirming it.

        Raises:
            InvalidTransitionException: Appointment is not pending
            BadRequestException: Target user is not an active practitioner
            ConflictException: Practitioner already busy in that window
        """
        appointment = await self._load(appointment_id)
        self._ensure_pending(appointment)

        practitioner = await self.profiles.get_user(data.practitioner_id)
        if practitioner.get("role") != UserRole.PRACTITIONER.value:
            raise BadRequestException("The selected user is not a practitioner")
        if not practitioner.get("active"):
            raise BadRequestException("The selected practitioner is not active")

        day = clinic_date(appointment["scheduled_at"])
        async with slot_lock(self.db, day, data.practitioner_id):
            # Re-read under the lock
            appointment = await self._load(appointment_id)
            self._ensure_pending(appointment)
            await self._ensure_slot_free(
                appointment["scheduled_at"],
                appointment["duration_minutes"],
                practitioner_id=data.practitioner_id,
                exclude_id=appointment_id,
            )
            appointment = await self._update(
                appointment_id,
                {
                    "practitioner_id": data.practitioner_id,
                    "status": AppointmentStatus.CONFIRMED.value,
                    "observations": data.observations,
                    "assigned_at": utcnow(),
                },
                {AppointmentStatus.PENDING.value},
            )
            await self.publisher.record(
                self.db, EventType.CITA_UPDATED, appointment_payload(appointment)
            )
            await self._commit_and_publish()

        logger.info(
            "practitioner_assigned",
            appointment_id=appointment_id,
            practitioner_id=data.practitioner_id,
        )
        await self.notifier.appointment_assigned(appointment)
        return appointment

    async def reschedule(
        self,
        appointment_id: int,
        data: AppointmentReschedule,
        actor: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Move an active appointment to a new datetime.

        Clients must respect the lead time; which timestamp it is measured
        against is set by ``RESCHEDULE_LEAD_TIME_POLICY``.

        Raises:
            InvalidTransitionException: Appointment is no longer active
            BadRequestException: Past target or lead time violated
            ConflictException: New slot is taken
        """
        appointment = await self.get_appointment(appointment_id, actor)
        ensure_active(appointment["status"])

        new_scheduled_at = to_utc_naive(data.new_scheduled_at)
        if new_scheduled_at <= utcnow():
            raise BadRequestException("The new appointment date must be in the future")

        if actor["role"] == UserRole.CLIENT.value:
            if settings.reschedule_lead_time_policy == LeadTimePolicy.TARGET:
                self._check_lead_time(new_scheduled_at, "rescheduled")
            else:
                self._check_lead_time(appointment["scheduled_at"], "rescheduled")

        previous_scheduled_at = appointment["scheduled_at"]
        new_day = clinic_date(new_scheduled_at)
        async with slot_lock(self.db, new_day):
            appointment = await self._load(appointment_id)
            ensure_active(appointment["status"])
            await self._ensure_slot_free(
                new_scheduled_at,
                appointment["duration_minutes"],
                exclude_id=appointment_id,
            )
            appointment = await self._update(
                appointment_id,
                {
                    "previous_scheduled_at": previous_scheduled_at,
                    "scheduled_at": new_scheduled_at,
                    "reschedule_reason": data.reason,
                    "rescheduled_at": utcnow(),
                    "reminder_sent": False,
                    "reminder_sent_at": None,
                },
                ACTIVE_STATE_VALUES,
            )
            await self.publisher.record(
                self.db,
                EventType.CITA_RESCHEDULED,
                {
                    **appointment_payload(appointment),
                    "previous_scheduled_at": previous_scheduled_at.isoformat(),
                    "new_scheduled_at": new_scheduled_at.isoformat(),
                },
            )
            await self._commit_and_publish()

        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            previous_scheduled_at=previous_scheduled_at.isoformat(),
            new_scheduled_at=new_scheduled_at.isoformat(),
        )
        await self.notifier.slots_changed(clinic_date(previous_scheduled_at))
        if new_day != clinic_date(previous_scheduled_at):
            await self.notifier.slots_changed(new_day)
        await self.notifier.appointment_updated(
            appointment, previous_scheduled_at=previous_scheduled_at.isoformat()
        )
        return appointment

    async def cancel(
        self,
        appointment_id: int,
        data: AppointmentCancel,
        actor: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Cancel an active appointment.

        Clients must cancel at least the lead time before the appointment;
        staff are exempt.
        """
        appointment = await self.get_appointment(appointment_id, actor)
        ensure_active(appointment["status"])

        if actor["role"] == UserRole.CLIENT.value:
            self._check_lead_time(appointment["scheduled_at"], "cancelled")

        appointment = await self._update(
            appointment_id,
            {
                "status": AppointmentStatus.CANCELLED.value,
                "cancellation_reason": data.reason,
                "cancelled_at": utcnow(),
            },
            ACTIVE_STATE_VALUES,
        )
        await self.publisher.record(
            self.db, EventType.CITA_CANCELLED, appointment_payload(appointment)
        )
        await self._commit_and_publish()

        logger.info("appointment_cancelled", appointment_id=appointment_id, by=actor["id"])
        client = await self.profiles.get_user_quiet(appointment["client_id"])
        await self.notifier.appointment_cancelled(appointment, client)
        return appointment

    async def update_status(
        self,
        appointment_id: int,
        data: AppointmentStatusUpdate,
        actor: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Move an appointment through the state machine.

        Practitioners may only update appointments assigned to them.

        Raises:
            InvalidTransitionException: The transition is not allowed
            BadRequestException: Confirming without an assigned practitioner
        """
        appointment = await self._load(appointment_id)
        if (
            actor["role"] == UserRole.PRACTITIONER.value
            and appointment["practitioner_id"] != actor["id"]
        ):
            raise ForbiddenException("Only the assigned practitioner can update this appointment")

        previous_status = appointment["status"]
        ensure_transition(previous_status, data.status)
        if (
            data.status == AppointmentStatus.CONFIRMED
            and previous_status != data.status.value
            and appointment["practitioner_id"] is None
        ):
            raise BadRequestException("Assign a practitioner to confirm the appointment")

        values: dict[str, Any] = {"status": data.status.value}
        if data.practitioner_notes is not None:
            values["practitioner_notes"] = data.practitioner_notes
        if data.status == AppointmentStatus.CANCELLED and previous_status != data.status.value:
            values["cancelled_at"] = utcnow()

        appointment = await self._update(appointment_id, values, {previous_status})
        await self.publisher.record(
            self.db,
            EventType.CITA_UPDATED,
            {**appointment_payload(appointment), "previous_status": previous_status},
        )
        await self._commit_and_publish()

        logger.info(
            "appointment_status_updated",
            appointment_id=appointment_id,
            previous_status=previous_status,
            status=data.status.value,
        )
        if previous_status in ACTIVE_STATE_VALUES and data.status.value not in ACTIVE_STATE_VALUES:
            await self.notifier.slots_changed(clinic_date(appointment["scheduled_at"]))
        await self.notifier.appointment_updated(appointment, previous_status=previous_status)
        return appointment
