from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import BookingError, BookingResult
from booking_backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    http_error_from_exception,
    raise_for_result,
    to_naive_local,
)
from booking_backend.services.booking import AvailableSlot, BookingCoordinator

router = APIRouter(tags=['appointments'])


def normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class BookAppointmentRequest(BaseModel):
    client_id: int
    therapist_id: int
    service_id: int
    start_time: datetime
    notes: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return to_naive_local(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class RescheduleAppointmentRequest(BaseModel):
    appointment_id: int
    new_start_time: datetime

    @field_validator('new_start_time')
    @classmethod
    def validate_new_start_time(cls, value: datetime) -> datetime:
        return to_naive_local(value)


class RebookAppointmentRequest(BaseModel):
    previous_appointment_id: int
    start_time: datetime
    notes: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return to_naive_local(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_notes(value)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class AppointmentResponse(BaseModel):
    id: int
    client_id: int
    therapist_id: int
    service_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None


def to_appointment_response(appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        client_id=appointment.client_id,
        therapist_id=appointment.therapist_id,
        service_id=appointment.service_id,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        duration_minutes=int((appointment.end_time - appointment.start_time).total_seconds() // 60),
        status=appointment.status,
        notes=appointment.notes,
        cancellation_reason=appointment.cancellation_reason,
        cancelled_at=appointment.cancelled_at,
    )


@router.get('/available', response_model=list[AvailableSlot])
def find_available_slots(
    service_id: int = Query(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
    therapist_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return BookingCoordinator(db).find_available_slots(service_id, therapist_id, start_date, end_date)
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/therapist/{therapist_id}', response_model=list[AppointmentResponse])
def list_therapist_schedule(
    therapist_id: int,
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = BookingCoordinator(db).list_therapist_schedule(
            therapist_id, to_naive_local(start), to_naive_local(end)
        )
        return [to_appointment_response(appointment) for appointment in appointments]
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/client/{client_id}', response_model=list[AppointmentResponse])
def list_client_appointments(client_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointments = BookingCoordinator(db).list_client_appointments(client_id)
        return [to_appointment_response(appointment) for appointment in appointments]
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return to_appointment_response(BookingCoordinator(db).get_appointment(appointment_id))
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=BookingResult, status_code=status.HTTP_201_CREATED)
def book_appointment(data: BookAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = BookingCoordinator(db).book(
            data.client_id, data.therapist_id, data.service_id, data.start_time, data.notes
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return raise_for_result(result)


@router.put('/reschedule', response_model=BookingResult)
def reschedule_appointment(data: RescheduleAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = BookingCoordinator(db).reschedule(data.appointment_id, data.new_start_time)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return raise_for_result(result)


@router.post('/rebook', response_model=BookingResult, status_code=status.HTTP_201_CREATED)
def rebook_appointment(data: RebookAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = BookingCoordinator(db).rebook(data.previous_appointment_id, data.start_time, data.notes)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return raise_for_result(result)


@router.put('/{appointment_id}/cancel', status_code=status.HTTP_204_NO_CONTENT)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = BookingCoordinator(db).cancel(appointment_id, data.reason if data else None)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    raise_for_result(result)


@router.put('/{appointment_id}/complete', response_model=BookingResult)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = BookingCoordinator(db).complete(appointment_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return raise_for_result(result)


@router.put('/{appointment_id}/no-show', response_model=BookingResult)
def mark_appointment_no_show(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = BookingCoordinator(db).mark_no_show(appointment_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return raise_for_result(result)
