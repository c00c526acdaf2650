"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class ConsultationType(str, Enum):
    """Consultation type enumeration."""

    GENERAL = "general"
    CONTROL = "control"
    URGENT = "urgent"


class Category(str, Enum):
    """Treatment category; each is valid for exactly one consultation type."""

    GENERAL_DENTISTRY = "odontologia_general"
    SPECIALTY_DIAGNOSIS = "diagnostico_especialidad"
    ORTHODONTICS = "ortodoncia"
    ENDODONTICS = "endodoncia"
    ORAL_SURGERY = "cirugia_oral"
    PROSTHODONTICS = "protesis"
    PERIODONTICS = "periodoncia"
    URGENT_ORAL_SURGERY = "cirugia_oral_urgencia"
    URGENT_ENDODONTICS = "endodoncia_urgencia"
    REHABILITATION = "rehabilitacion"
    DENTAL_TRAUMA = "trauma_dental"


CATEGORIES_BY_TYPE: dict[ConsultationType, frozenset[Category]] = {
    ConsultationType.GENERAL: frozenset(
        {Category.GENERAL_DENTISTRY, Category.SPECIALTY_DIAGNOSIS}
    ),
    ConsultationType.CONTROL: frozenset(
        {
            Category.ORTHODONTICS,
            Category.ENDODONTICS,
            Category.ORAL_SURGERY,
            Category.PROSTHODONTICS,
            Category.PERIODONTICS,
        }
    ),
    ConsultationType.URGENT: frozenset(
        {
            Category.URGENT_ORAL_SURGERY,
            Category.URGENT_ENDODONTICS,
            Category.REHABILITATION,
            Category.DENTAL_TRAUMA,
        }
    ),
}


class Priority(str, Enum):
    """Appointment priority enumeration."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment.

    ``client_id`` is ignored for client callers, who always book for themselves,
    and required for staff.
    """

    consultation_type: ConsultationType
    category: Category
    scheduled_at: datetime
    details: str | None = Field(None, max_length=2000)
    duration_minutes: int = Field(default=60, ge=15, le=480)
    priority: Priority = Priority.MEDIUM
    client_id: int | None = Field(None, gt=0)
    estimated_cost: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)

    @model_validator(mode="after")
    def validate_category(self) -> "AppointmentCreate":
        """Validate the category belongs to the consultation type."""
        if self.category not in CATEGORIES_BY_TYPE[self.consultation_type]:
            allowed = sorted(c.value for c in CATEGORIES_BY_TYPE[self.consultation_type])
            raise ValueError(
                f"Category '{self.category.value}' is not valid for consultation type "
                f"'{self.consultation_type.value}'. Allowed: {', '.join(allowed)}"
            )
        return self


class PractitionerAssignment(BaseModel):
    """Schema for assigning a practitioner."""

    practitioner_id: int = Field(..., gt=0)
    observations: str | None = Field(None, max_length=1000)


class AppointmentReschedule(BaseModel):
    """Schema for rescheduling an appointment."""

    new_scheduled_at: datetime
    reason: str | None = Field(None, max_length=1000)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    practitioner_notes: str | None = Field(None, max_length=2000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: int
    client_id: int
    practitioner_id: int | None = None
    consultation_type: ConsultationType
    category: Category
    scheduled_at: datetime
    duration_minutes: int
    details: str | None = None
    status: AppointmentStatus
    priority: Priority
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    previous_scheduled_at: datetime | None = None
    reschedule_reason: str | None = None
    rescheduled_at: datetime | None = None
    observations: str | None = None
    assigned_at: datetime | None = None
    practitioner_notes: str | None = None
    reminder_sent: bool
    reminder_sent_at: datetime | None = None
    estimated_cost: Decimal | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    client_id: int | None = None
    practitioner_id: int | None = None
    status: AppointmentStatus | None = None
    consultation_type: ConsultationType | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    sort_by: Literal["scheduled_at", "created_at", "status", "priority"] = "scheduled_at"
    sort_order: Literal["asc", "desc"] = "asc"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AvailabilityResponse(BaseModel):
    """Free half-hour slots of a clinic day (local wall-clock times)."""

    date: date
    timezone: str
    slot_minutes: int
    slots: list[str]
