"""Appointment endpoints (scheduling service)."""

from datetime import date, datetime
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import Appointments, CurrentUser, StaffUser, require_roles
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
    ConsultationType,
    PractitionerAssignment,
)

router = APIRouter()

StatusUpdater = Annotated[
    dict[str, Any], Depends(require_roles("admin", "front_desk", "practitioner"))
]


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """
    Book a new appointment in ``pending`` state.

    Args:
        data: Appointment creation data
        current_user: Authenticated user (client, or staff booking for a client)

    Returns:
        Created appointment
    """
    appointment = await service.create_appointment(data, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.get(
    "",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    service: Appointments,
    client_id: int | None = Query(None),
    practitioner_id: int | None = Query(None),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    consultation_type: ConsultationType | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    sort_by: Literal["scheduled_at", "created_at", "status", "priority"] = Query("scheduled_at"),
    sort_order: Literal["asc", "desc"] = Query("asc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering, sorting and pagination.

    Clients only ever see their own appointments.

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        client_id=client_id,
        practitioner_id=practitioner_id,
        status=status_filter,
        consultation_type=consultation_type,
        from_date=from_date,
        to_date=to_date,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(filters, current_user)


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Free slots of a clinic day",
)
async def availability(
    _current_user: CurrentUser,
    service: Appointments,
    day: date = Query(..., alias="date", description="Clinic day (YYYY-MM-DD)"),
) -> AvailabilityResponse:
    return await service.get_availability(day)


@router.get(
    "/client/{client_id}",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Appointments of a client",
)
async def client_appointments(
    client_id: int,
    current_user: CurrentUser,
    service: Appointments,
) -> list[AppointmentResponse]:
    rows = await service.list_for_client(client_id, current_user)
    return [AppointmentResponse.model_validate(row) for row in rows]


@router.get(
    "/practitioner/{practitioner_id}",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Schedule of a practitioner",
)
async def practitioner_appointments(
    practitioner_id: int,
    current_user: CurrentUser,
    service: Appointments,
) -> list[AppointmentResponse]:
    rows = await service.list_for_practitioner(practitioner_id, current_user)
    return [AppointmentResponse.model_validate(row) for row in rows]


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: int,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: Appointment not found
        ForbiddenException: A client asked for someone else's appointment
    """
    appointment = await service.get_appointment(appointment_id, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.put(
    "/{appointment_id}/assign-practitioner",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Assign a practitioner (staff)",
)
async def assign_practitioner(
    appointment_id: int,
    data: PractitionerAssignment,
    _staff: StaffUser,
    service: Appointments,
) -> AppointmentResponse:
    """Assign a practitioner to a pending appointment, which confirms it."""
    appointment = await service.assign_practitioner(appointment_id, data)
    return AppointmentResponse.model_validate(appointment)


@router.put(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Reschedule an appointment",
)
async def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    appointment = await service.reschedule(appointment_id, data, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.put(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel an appointment",
)
async def cancel_appointment(
    appointment_id: int,
    data: AppointmentCancel,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """
    Cancel an active appointment.

    Clients must cancel at least the configured lead time in advance.
    """
    appointment = await service.cancel(appointment_id, data, current_user)
    return AppointmentResponse.model_validate(appointment)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    current_user: StatusUpdater,
    service: Appointments,
) -> AppointmentResponse:
    """
    Move an appointment through its lifecycle.

    Raises:
        InvalidTransitionException: The transition is not allowed
    """
    appointment = await service.update_status(appointment_id, data, current_user)
    return AppointmentResponse.model_validate(appointment)
