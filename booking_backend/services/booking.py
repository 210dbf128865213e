"""
Booking coordination.

The read path (``find_available_slots``) is lock free and may be stale by
the time a client acts on it. Every write re-runs the same availability
pipeline for the exact requested interval inside ``CalendarWriteGuard`` and
reports expected failures as a ``BookingResult`` instead of raising.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable

from pydantic import BaseModel
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import (
    BookingError,
    BookingResult,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
)
from booking_backend.models.appointment import Appointment
from booking_backend.scheduling.availability import AvailabilityResolver, Interval
from booking_backend.scheduling.overlap import ConflictChecker
from booking_backend.scheduling.slots import SlotSequence
from booking_backend.scheduling.status import AppointmentStatus, ensure_reschedulable, ensure_transition
from booking_backend.services.guard import GENERIC_CONFLICT_MESSAGE, CalendarWriteGuard
from booking_backend.stores import (
    ServiceInfo,
    SqlAppointmentStore,
    SqlAvailabilityStore,
    SqlClientDirectory,
    SqlServiceCatalog,
)

logger = logging.getLogger(__name__)


class AvailableSlot(BaseModel):
    start_time: datetime
    end_time: datetime
    therapist_id: int
    therapist_name: str
    service_id: int
    duration_minutes: int


def day_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    return datetime.combine(start_date, time.min), datetime.combine(end_date, time.min)


class BookingCoordinator:
    def __init__(
        self,
        db: Session,
        *,
        clock: Callable[[], datetime] = datetime.now,
        slot_step_minutes: int | None = None,
        guard: CalendarWriteGuard | None = None,
    ):
        self.db = db
        self.clock = clock
        self.slot_step_minutes = slot_step_minutes if slot_step_minutes is not None else config.SLOT_STEP_MINUTES

        self.availability = SqlAvailabilityStore(db)
        self.appointments = SqlAppointmentStore(db)
        self.services = SqlServiceCatalog(db)
        self.clients = SqlClientDirectory(db)

        self.resolver = AvailabilityResolver(self.availability)
        self.checker = ConflictChecker(self.appointments)
        self.guard = guard or CalendarWriteGuard(db, self.appointments)

    # Read path

    def _step_for(self, duration_minutes: int) -> int:
        return self.slot_step_minutes or duration_minutes

    def _active_service(self, service_id: int) -> ServiceInfo:
        service = self.services.get_service(service_id)
        if not service.is_active:
            raise InvalidRequestError(f'Service {service.name} is not currently offered.')
        return service

    def free_slots(
        self,
        therapist_id: int,
        duration_minutes: int,
        start_date: date,
        end_date: date,
        exclude_appointment_id: int | None = None,
    ) -> list[Interval]:
        intervals = self.resolver.resolve_flat(therapist_id, start_date, end_date)
        candidates = SlotSequence(intervals, duration_minutes, self._step_for(duration_minutes))
        range_start, range_end = day_bounds(start_date, end_date)

        return self.checker.filter_free(candidates, therapist_id, range_start, range_end, exclude_appointment_id)

    def find_available_slots(
        self,
        service_id: int,
        therapist_id: int | None,
        start_date: date,
        end_date: date,
    ) -> list[AvailableSlot]:
        if start_date >= end_date:
            raise InvalidRequestError('The end date must be after the start date.')
        if (end_date - start_date).days > config.MAX_SLOT_RANGE_DAYS:
            raise InvalidRequestError(f'Slots can be searched at most {config.MAX_SLOT_RANGE_DAYS} days at a time.')

        service = self._active_service(service_id)

        if therapist_id is not None:
            if not self.availability.therapist_exists(therapist_id):
                raise NotFoundError(f'Therapist {therapist_id} not found.')
            therapist_ids = [therapist_id] if self.services.therapist_offers(therapist_id, service_id) else []
        else:
            therapist_ids = self.services.therapists_offering(service_id)

        now = self.clock()
        slots: list[AvailableSlot] = []

        for current_therapist_id in therapist_ids:
            therapist = self.availability.get_therapist(current_therapist_id)
            for slot in self.free_slots(current_therapist_id, service.duration_minutes, start_date, end_date):
                if slot.start <= now:
                    continue
                slots.append(
                    AvailableSlot(
                        start_time=slot.start,
                        end_time=slot.end,
                        therapist_id=current_therapist_id,
                        therapist_name=therapist.full_name,
                        service_id=service.id,
                        duration_minutes=service.duration_minutes,
                    )
                )

        slots.sort(key=lambda slot: (slot.start_time, slot.therapist_id))
        return slots

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment

    def list_therapist_schedule(self, therapist_id: int, start: datetime, end: datetime) -> list[Appointment]:
        if not self.availability.therapist_exists(therapist_id):
            raise NotFoundError(f'Therapist {therapist_id} not found.')
        if start >= end:
            raise InvalidRequestError('The end of the range must be after its start.')
        return self.appointments.list_for_therapist(therapist_id, start, end)

    def list_client_appointments(self, client_id: int) -> list[Appointment]:
        if not self.clients.client_exists(client_id):
            raise NotFoundError('The client does not exist.')
        return self.appointments.list_for_client(client_id)

    # Write path

    def _fresh_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.appointments.get_fresh(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment

    def _ensure_future(self, start_time: datetime) -> None:
        if start_time <= self.clock():
            raise InvalidRequestError('Appointments must be scheduled in the future.')

    def _ensure_bookable(
        self,
        therapist_id: int,
        duration_minutes: int,
        start_time: datetime,
        exclude_appointment_id: int | None = None,
    ) -> datetime:
        """Re-check one interval against current rules and appointments; returns its end."""
        requested = Interval(start_time, start_time + timedelta(minutes=duration_minutes))
        day = start_time.date()

        intervals = self.resolver.resolve_flat(therapist_id, day, day + timedelta(days=1))
        candidates = SlotSequence(intervals, duration_minutes, self._step_for(duration_minutes))
        if not candidates.contains(requested):
            raise ConflictError(GENERIC_CONFLICT_MESSAGE)
        if not self.checker.is_free(therapist_id, requested.start, requested.end, exclude_appointment_id):
            raise ConflictError(GENERIC_CONFLICT_MESSAGE)

        return requested.end

    def _validate_notes(self, notes: str | None) -> str | None:
        if notes is None:
            return None

        normalized = notes.strip()
        if not normalized:
            return None
        if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
            raise InvalidRequestError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
        return normalized

    def _book(
        self,
        client_id: int,
        therapist_id: int,
        service_id: int,
        start_time: datetime,
        notes: str | None,
    ) -> Appointment:
        if not self.clients.client_exists(client_id):
            raise NotFoundError('The client does not exist.')
        therapist = self.availability.get_therapist(therapist_id)
        if therapist is None:
            raise NotFoundError('The selected therapist does not exist.')
        if not therapist.is_active:
            raise InvalidRequestError('The selected therapist is not taking appointments.')

        service = self._active_service(service_id)
        if not self.services.therapist_offers(therapist_id, service_id):
            raise InvalidRequestError('The selected therapist does not offer this service.')

        normalized_notes = self._validate_notes(notes)
        self._ensure_future(start_time)

        def write() -> Appointment:
            end_time = self._ensure_bookable(therapist_id, service.duration_minutes, start_time)
            now = self.clock()
            return self.appointments.insert(
                Appointment(
                    client_id=client_id,
                    therapist_id=therapist_id,
                    service_id=service_id,
                    start_time=start_time,
                    end_time=end_time,
                    status=AppointmentStatus.SCHEDULED.value,
                    notes=normalized_notes,
                    created_at=now,
                    updated_at=now,
                )
            )

        return self.guard.run(therapist_id, write)

    def book(
        self,
        client_id: int,
        therapist_id: int,
        service_id: int,
        start_time: datetime,
        notes: str | None = None,
    ) -> BookingResult:
        try:
            appointment = self._book(client_id, therapist_id, service_id, start_time, notes)
        except BookingError as error:
            logger.info(
                'Booking rejected (%s) for therapist %s at %s: %s',
                error.kind.value, therapist_id, start_time, error.message,
            )
            return BookingResult.from_error(error)

        logger.info(
            'Appointment booked. AppointmentId: %s, ClientId: %s, TherapistId: %s',
            appointment.id, client_id, therapist_id,
        )
        return BookingResult.ok(appointment.id)

    def _reschedule(self, appointment_id: int, new_start_time: datetime) -> Appointment:
        appointment = self.get_appointment(appointment_id)
        ensure_reschedulable(appointment.status)
        therapist_id = appointment.therapist_id
        duration_minutes = int((appointment.end_time - appointment.start_time).total_seconds() // 60)

        self._ensure_future(new_start_time)

        def write() -> Appointment:
            current = self._fresh_appointment(appointment_id)
            ensure_reschedulable(current.status)

            new_end_time = self._ensure_bookable(therapist_id, duration_minutes, new_start_time, appointment_id)
            current.updated_at = self.clock()
            return self.appointments.move(current, new_start_time, new_end_time)

        return self.guard.run(therapist_id, write)

    def reschedule(self, appointment_id: int, new_start_time: datetime) -> BookingResult:
        try:
            appointment = self._reschedule(appointment_id, new_start_time)
        except BookingError as error:
            logger.info('Reschedule of appointment %s rejected (%s): %s', appointment_id, error.kind.value, error.message)
            return BookingResult.from_error(error)

        logger.info('Appointment rescheduled. AppointmentId: %s, NewStartTime: %s', appointment.id, new_start_time)
        return BookingResult.ok(appointment.id)

    def _change_status(
        self,
        appointment_id: int,
        target: AppointmentStatus,
        reason: str | None = None,
    ) -> BookingResult:
        try:
            appointment = self.get_appointment(appointment_id)

            def write() -> Appointment:
                current = self._fresh_appointment(appointment_id)
                ensure_transition(current.status, target)
                now = self.clock()
                current.updated_at = now
                return self.appointments.update_status(appointment_id, target, reason, now)

            self.guard.run(appointment.therapist_id, write)
        except BookingError as error:
            logger.info(
                'Status change of appointment %s to %s rejected (%s): %s',
                appointment_id, target.value, error.kind.value, error.message,
            )
            return BookingResult.from_error(error)

        logger.info('Appointment %s is now %s', appointment_id, target.value)
        return BookingResult.ok(appointment_id)

    def cancel(self, appointment_id: int, reason: str | None = None) -> BookingResult:
        reason = reason.strip() if reason and reason.strip() else None
        return self._change_status(appointment_id, AppointmentStatus.CANCELLED, reason)

    def complete(self, appointment_id: int) -> BookingResult:
        return self._change_status(appointment_id, AppointmentStatus.COMPLETED)

    def mark_no_show(self, appointment_id: int) -> BookingResult:
        return self._change_status(appointment_id, AppointmentStatus.NO_SHOW)

    def rebook(self, previous_appointment_id: int, start_time: datetime, notes: str | None = None) -> BookingResult:
        """Book the same client, therapist and service as an earlier appointment."""
        previous = self.appointments.get(previous_appointment_id)
        if previous is None:
            return BookingResult.from_error(NotFoundError('Previous appointment not found.'))

        return self.book(
            previous.client_id,
            previous.therapist_id,
            previous.service_id,
            start_time,
            notes if notes is not None else previous.notes,
        )
