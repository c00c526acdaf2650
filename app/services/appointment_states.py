"""Appointment state machine."""

from app.core.exceptions import InvalidTransitionException
from app.schemas.appointments import AppointmentStatus

# Allowed moves; terminal states have no entry
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
}

# States that hold a slot and can still be cancelled or rescheduled
ACTIVE_STATES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
ACTIVE_STATE_VALUES = frozenset(s.value for s in ACTIVE_STATES)

TERMINAL_STATES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)


def can_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> bool:
    """Whether ``current -> target`` is allowed. Same-state is always allowed."""
    current = AppointmentStatus(current)
    target = AppointmentStatus(target)
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> None:
    """Raise InvalidTransitionException unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionException(AppointmentStatus(current).value, AppointmentStatus(target).value)


def ensure_active(current: AppointmentStatus | str) -> None:
    """Raise unless the appointment still occupies its slot (pending or confirmed)."""
    if AppointmentStatus(current) not in ACTIVE_STATES:
        raise InvalidTransitionException(AppointmentStatus(current).value)


def is_terminal(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATES
