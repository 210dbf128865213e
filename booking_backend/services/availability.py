import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from booking_backend.core.errors import ConflictError, InvalidRequestError, NotFoundError
from booking_backend.models.availability import AvailabilityRule
from booking_backend.models.time_block import TimeBlock
from booking_backend.scheduling.availability import WorkWindow, select_window
from booking_backend.scheduling.status import AppointmentStatus, ensure_transition
from booking_backend.services.guard import CalendarWriteGuard
from booking_backend.stores import SqlAppointmentStore, SqlAvailabilityStore

logger = logging.getLogger(__name__)


def validate_rule(
    specific_date: date | None,
    day_of_week: int | None,
    window: WorkWindow,
) -> None:
    if (specific_date is None) == (day_of_week is None):
        raise InvalidRequestError('Exactly one of date or day of week must be provided.')

    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise InvalidRequestError('Day of week must be between 0 (Monday) and 6 (Sunday).')

    if window.is_available and (window.start_time is None or window.end_time is None):
        raise InvalidRequestError('Start time and end time must be provided when setting availability to true.')

    if window.start_time is not None and window.end_time is not None and window.start_time >= window.end_time:
        raise InvalidRequestError('Start time must be before end time.')

    if (window.break_start_time is None) != (window.break_end_time is None):
        raise InvalidRequestError('Both break start time and break end time must be provided or neither.')

    if window.break_start_time is None:
        return

    if window.break_start_time >= window.break_end_time:
        raise InvalidRequestError('Break start time must be before break end time.')

    if window.start_time is not None and window.end_time is not None and (
        window.break_start_time < window.start_time or window.break_end_time > window.end_time
    ):
        raise InvalidRequestError('The break must fall within the working hours.')


def set_availability_rule(
    db: Session,
    therapist_id: int,
    *,
    specific_date: date | None = None,
    day_of_week: int | None = None,
    is_available: bool = True,
    start_time: time | None = None,
    end_time: time | None = None,
    break_start_time: time | None = None,
    break_end_time: time | None = None,
    notes: str | None = None,
    guard: CalendarWriteGuard | None = None,
) -> AvailabilityRule:
    """Create or replace the override for a date, or the recurring rule for a weekday.

    Runs under the calendar write guard so that a booking validated against
    the previous rules cannot commit after the rules change.
    """
    window = WorkWindow(
        is_available=is_available,
        start_time=start_time,
        end_time=end_time,
        break_start_time=break_start_time,
        break_end_time=break_end_time,
    )
    validate_rule(specific_date, day_of_week, window)

    store = SqlAvailabilityStore(db)
    if not store.therapist_exists(therapist_id):
        raise NotFoundError(f'Therapist {therapist_id} not found.')

    guard = guard or CalendarWriteGuard(db)
    rule = guard.run(
        therapist_id,
        lambda: store.upsert_rule(
            therapist_id,
            specific_date=specific_date,
            day_of_week=day_of_week,
            window=window,
            notes=notes,
        ),
    )

    logger.info(
        'Availability updated for therapist %s (%s)',
        therapist_id, specific_date.isoformat() if specific_date else f'weekday {day_of_week}',
    )
    return rule


def describe_day(db: Session, therapist_id: int, target_date: date) -> WorkWindow | None:
    """The rule that governs ``target_date`` after override precedence, if any."""
    store = SqlAvailabilityStore(db)
    if not store.therapist_exists(therapist_id):
        raise NotFoundError(f'Therapist {therapist_id} not found.')

    return select_window(store.get_rules(therapist_id, target_date, target_date + timedelta(days=1)), target_date)


@dataclass
class BlockOutcome:
    block: TimeBlock
    cancelled_appointment_ids: list[int] = field(default_factory=list)


def block_therapist_time(
    db: Session,
    therapist_id: int,
    start_time: datetime,
    end_time: datetime,
    *,
    reason: str | None = None,
    override_existing_appointments: bool = False,
    guard: CalendarWriteGuard | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> BlockOutcome:
    """Take a therapist off the calendar for ``[start_time, end_time)``.

    Scheduled appointments inside the range make the request fail unless
    ``override_existing_appointments`` is set, in which case they are
    cancelled in the same transaction that stores the block.
    """
    if start_time >= end_time:
        raise InvalidRequestError('Start time must be before end time.')

    store = SqlAvailabilityStore(db)
    if not store.therapist_exists(therapist_id):
        raise NotFoundError(f'Therapist {therapist_id} not found.')

    appointments = SqlAppointmentStore(db)
    guard = guard or CalendarWriteGuard(db, appointments)

    def write() -> BlockOutcome:
        affected = appointments.list_scheduled_for_therapist(therapist_id, start_time, end_time)
        if affected and not override_existing_appointments:
            raise ConflictError(
                f'There are {len(affected)} existing appointments during this time period. '
                'Set override_existing_appointments to cancel them.'
            )

        now = clock()
        cancellation_reason = f'Cancelled due to therapist unavailability: {reason}' if reason else (
            'Cancelled due to therapist unavailability.'
        )
        cancelled_ids = []
        for appointment in affected:
            ensure_transition(appointment.status, AppointmentStatus.CANCELLED)
            appointment.updated_at = now
            appointments.update_status(appointment.id, AppointmentStatus.CANCELLED, cancellation_reason, now)
            cancelled_ids.append(appointment.id)

        block = store.add_block(
            TimeBlock(
                therapist_id=therapist_id,
                start_time=start_time,
                end_time=end_time,
                reason=reason,
                created_at=now,
            )
        )
        return BlockOutcome(block=block, cancelled_appointment_ids=cancelled_ids)

    outcome = guard.run(therapist_id, write)

    logger.info(
        'Blocked %s to %s for therapist %s; cancelled appointments: %s',
        start_time, end_time, therapist_id, outcome.cancelled_appointment_ids or 'none',
    )
    return outcome


def remove_time_block(
    db: Session,
    therapist_id: int,
    block_id: int,
    guard: CalendarWriteGuard | None = None,
) -> None:
    store = SqlAvailabilityStore(db)
    guard = guard or CalendarWriteGuard(db)

    def write() -> None:
        if not store.remove_block(therapist_id, block_id):
            raise NotFoundError('Blocked time not found.')

    guard.run(therapist_id, write)
    logger.info('Removed time block %s for therapist %s', block_id, therapist_id)


def list_time_blocks(db: Session, therapist_id: int, start: datetime, end: datetime) -> list[TimeBlock]:
    store = SqlAvailabilityStore(db)
    if not store.therapist_exists(therapist_id):
        raise NotFoundError(f'Therapist {therapist_id} not found.')
    if start >= end:
        raise InvalidRequestError('The end of the range must be after its start.')
    return store.list_blocks(therapist_id, start, end)
