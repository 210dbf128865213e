"""Appointment status state machine.

``ALLOWED_TRANSITIONS`` is the single table of legal moves. Every status
change in the application goes through ``ensure_transition``.
"""

from enum import Enum

from booking_backend.core.errors import InvalidStateError


class AppointmentStatus(str, Enum):
    SCHEDULED = 'scheduled'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'


ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Statuses that occupy the therapist's calendar.
ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)


def is_terminal(status: AppointmentStatus | str) -> bool:
    return not ALLOWED_TRANSITIONS[AppointmentStatus(status)]


def can_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> bool:
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]


def ensure_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> AppointmentStatus:
    current_status = AppointmentStatus(current)
    target_status = AppointmentStatus(target)

    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidStateError(
            f'Cannot change an appointment from {current_status.value} to {target_status.value}.'
        )

    return target_status


def ensure_reschedulable(current: AppointmentStatus | str) -> AppointmentStatus:
    """Only appointments that can still change status may move in time."""
    current_status = AppointmentStatus(current)
    if is_terminal(current_status):
        raise InvalidStateError(f'Cannot reschedule an appointment that is {current_status.value}.')
    return current_status
