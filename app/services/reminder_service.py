"""Periodic appointment sweeps: reminders, no-shows and purging."""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import EventDeliveryMode, settings
from app.core.clock import subtract_months, utcnow
from app.core.events import EventBus
from app.core.scheduler import schedule_cron_job, schedule_interval_job
from app.database import AsyncSessionLocal
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus
from app.schemas.events import EventType
from app.services.appointment_states import ACTIVE_STATE_VALUES
from app.services.event_publisher import EventPublisher, OutboxRelay
from app.services.notification_service import NotificationService, appointment_payload

logger = structlog.get_logger()

REMINDER_24H = "24h"
REMINDER_2H = "2h"

_ACTIVE = sorted(ACTIVE_STATE_VALUES)


class ReminderService:
    """Sweeps over the appointment table. Each returns what it did."""

    def __init__(self, db: AsyncSession, publisher: EventPublisher, notifier: NotificationService):
        self.db = db
        self.publisher = publisher
        self.notifier = notifier

    async def _upcoming(self, now: datetime, hours: int, unsent_only: bool) -> list[dict[str, Any]]:
        conditions = [
            appointments.c.scheduled_at >= now,
            appointments.c.scheduled_at <= now + timedelta(hours=hours),
            appointments.c.status.in_(_ACTIVE),
        ]
        if unsent_only:
            conditions.append(appointments.c.reminder_sent == False)  # noqa: E712
        stmt = select(appointments).where(and_(*conditions)).order_by(appointments.c.scheduled_at)
        return [dict(row) for row in (await self.db.execute(stmt)).mappings().all()]

    async def _remind(self, appointment: dict[str, Any], reminder_type: str) -> None:
        await self.publisher.record(
            self.db,
            EventType.CITA_REMINDER,
            {**appointment_payload(appointment), "reminder_type": reminder_type},
        )

    async def send_reminders(self, now: datetime | None = None) -> dict[str, int]:
        """
        Publish reminders for upcoming appointments.

        The 24h reminder is sent once per appointment (``reminder_sent``). The
        2h reminder carries no flag and repeats on every sweep inside the window.
        """
        now = now or utcnow()

        day_ahead = await self._upcoming(now, settings.reminder_window_hours, unsent_only=True)
        for appointment in day_ahead:
            await self._remind(appointment, REMINDER_24H)
            await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment["id"])
                .values(reminder_sent=True, reminder_sent_at=now, updated_at=now)
            )

        soon = await self._upcoming(now, settings.short_reminder_window_hours, unsent_only=False)
        for appointment in soon:
            await self._remind(appointment, REMINDER_2H)

        await self.db.commit()
        await self.publisher.dispatch()

        for appointment in day_ahead:
            await self.notifier.reminder(appointment, REMINDER_24H)
        for appointment in soon:
            await self.notifier.reminder(appointment, REMINDER_2H)

        counts = {REMINDER_24H: len(day_ahead), REMINDER_2H: len(soon)}
        logger.info("reminders_sent", **counts)
        return counts

    async def mark_no_shows(self, now: datetime | None = None) -> int:
        """Active appointments past the grace period become ``no_show``."""
        now = now or utcnow()
        cutoff = now - timedelta(hours=settings.no_show_grace_hours)

        stmt = select(appointments).where(
            and_(appointments.c.scheduled_at < cutoff, appointments.c.status.in_(_ACTIVE))
        )
        expired = [dict(row) for row in (await self.db.execute(stmt)).mappings().all()]

        marked = 0
        for appointment in expired:
            result = await self.db.execute(
                update(appointments)
                .where(
                    and_(
                        appointments.c.id == appointment["id"],
                        appointments.c.status == appointment["status"],
                    )
                )
                .values(status=AppointmentStatus.NO_SHOW.value, updated_at=now)
                .returning(appointments)
            )
            row = result.mappings().one_or_none()
            if row is None:
                # Changed by a request since it was read
                continue
            updated = dict(row)
            marked += 1
            await self.publisher.record(
                self.db,
                EventType.CITA_UPDATED,
                {**appointment_payload(updated), "previous_status": appointment["status"]},
            )

        await self.db.commit()
        await self.publisher.dispatch()

        logger.info("no_shows_marked", count=marked)
        return marked

    async def purge_cancelled(self, now: datetime | None = None) -> int:
        """Hard-delete cancelled appointments created before the retention window."""
        now = now or utcnow()
        cutoff = subtract_months(now, settings.cancelled_retention_months)
        result = await self.db.execute(
            delete(appointments).where(
                and_(
                    appointments.c.status == AppointmentStatus.CANCELLED.value,
                    appointments.c.created_at < cutoff,
                )
            )
        )
        await self.db.commit()
        logger.info("cancelled_appointments_purged", count=result.rowcount)
        return result.rowcount


SessionFactory = Callable[[], AsyncSession]


class SweepJobs:
    """Scheduler entry points; each opens its own session and never raises."""

    def __init__(
        self,
        bus: EventBus,
        notifier: NotificationService,
        session_factory: SessionFactory = AsyncSessionLocal,
    ):
        self.bus = bus
        self.notifier = notifier
        self.session_factory = session_factory

    async def _run(self, name: str, sweep: Callable[[ReminderService], Any]) -> Any:
        try:
            async with self.session_factory() as db:
                service = ReminderService(db, EventPublisher(self.bus), self.notifier)
                return await sweep(service)
        except Exception as e:
            logger.error("sweep_failed", sweep=name, error=str(e))
            return None

    async def reminders(self) -> Any:
        return await self._run("reminders", lambda s: s.send_reminders())

    async def no_shows(self) -> Any:
        return await self._run("no_shows", lambda s: s.mark_no_shows())

    async def purge(self) -> Any:
        return await self._run("purge", lambda s: s.purge_cancelled())

    async def relay_outbox(self) -> Any:
        try:
            async with self.session_factory() as db:
                return await OutboxRelay(self.bus).relay_once(db)
        except Exception as e:
            logger.error("sweep_failed", sweep="outbox_relay", error=str(e))
            return None

    def register(self) -> None:
        """Add every job to the process scheduler."""
        schedule_cron_job("appointment_reminders", self.reminders, "*/30 * * * *")
        schedule_cron_job("appointment_no_shows", self.no_shows, "0 * * * *")
        schedule_cron_job("appointment_purge", self.purge, "0 2 * * sun")
        if settings.event_delivery_mode == EventDeliveryMode.OUTBOX:
            schedule_interval_job(
                "event_outbox_relay", self.relay_outbox, settings.outbox_relay_interval_seconds
            )
