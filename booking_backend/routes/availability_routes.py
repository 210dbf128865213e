from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import BookingError, InvalidRequestError
from booking_backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    http_error_from_exception,
    to_naive_local,
)
from booking_backend.scheduling.availability import AvailabilityResolver
from booking_backend.services.availability import (
    block_therapist_time,
    describe_day,
    list_time_blocks,
    remove_time_block,
    set_availability_rule,
)
from booking_backend.stores import SqlAvailabilityStore

router = APIRouter(tags=['availability'])

MAX_RULE_NOTES_LENGTH = 500


class SetAvailabilityRequest(BaseModel):
    specific_date: date | None = None
    day_of_week: int | None = None
    is_available: bool = True
    start_time: time | None = None
    end_time: time | None = None
    break_start_time: time | None = None
    break_end_time: time | None = None
    notes: str | None = None

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Monday) and 6 (Sunday).')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_RULE_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_RULE_NOTES_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_target(self) -> 'SetAvailabilityRequest':
        if (self.specific_date is None) == (self.day_of_week is None):
            raise ValueError('Either specific_date or day_of_week must be provided, but not both.')
        return self


class AvailabilityRuleResponse(BaseModel):
    id: int
    therapist_id: int
    specific_date: date | None = None
    day_of_week: int | None = None
    is_available: bool
    start_time: time | None = None
    end_time: time | None = None
    break_start_time: time | None = None
    break_end_time: time | None = None
    notes: str | None = None


class DayAvailabilityResponse(BaseModel):
    date: date
    is_available: bool
    start_time: time | None = None
    end_time: time | None = None
    break_start_time: time | None = None
    break_end_time: time | None = None


class OpenIntervalResponse(BaseModel):
    date: date
    start_time: datetime
    end_time: datetime


class BlockTimeRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = None
    override_existing_appointments: bool = False

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime) -> datetime:
        return to_naive_local(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_RULE_NOTES_LENGTH:
            raise ValueError(f'Reason must be {MAX_RULE_NOTES_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_range(self) -> 'BlockTimeRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class TimeBlockResponse(BaseModel):
    id: int
    therapist_id: int
    start_time: datetime
    end_time: datetime
    reason: str | None = None


class BlockTimeResponse(TimeBlockResponse):
    cancelled_appointment_ids: list[int] = []


@router.put('/{therapist_id}/rules', response_model=AvailabilityRuleResponse)
def set_therapist_availability(
    therapist_id: int,
    data: SetAvailabilityRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rule = set_availability_rule(
            db,
            therapist_id,
            specific_date=data.specific_date,
            day_of_week=data.day_of_week,
            is_available=data.is_available,
            start_time=data.start_time,
            end_time=data.end_time,
            break_start_time=data.break_start_time,
            break_end_time=data.break_end_time,
            notes=data.notes,
        )

        return AvailabilityRuleResponse(
            id=rule.id,
            therapist_id=rule.therapist_id,
            specific_date=rule.specific_date,
            day_of_week=rule.day_of_week,
            is_available=rule.is_available,
            start_time=rule.start_time,
            end_time=rule.end_time,
            break_start_time=rule.break_start_time,
            break_end_time=rule.break_end_time,
            notes=rule.notes,
        )
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/{therapist_id}/day', response_model=DayAvailabilityResponse)
def get_therapist_day(
    therapist_id: int,
    target_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = describe_day(db, therapist_id, target_date)
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if window is None:
        return DayAvailabilityResponse(date=target_date, is_available=False)

    return DayAvailabilityResponse(
        date=target_date,
        is_available=window.is_available,
        start_time=window.start_time,
        end_time=window.end_time,
        break_start_time=window.break_start_time,
        break_end_time=window.break_end_time,
    )


@router.get('/{therapist_id}/open-intervals', response_model=list[OpenIntervalResponse])
def list_open_intervals(
    therapist_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    if start_date >= end_date or (end_date - start_date).days > config.MAX_SLOT_RANGE_DAYS:
        raise http_error_from_exception(
            InvalidRequestError(f'Choose a range of 1 to {config.MAX_SLOT_RANGE_DAYS} days.')
        )

    try:
        by_day = AvailabilityResolver(SqlAvailabilityStore(db)).resolve(therapist_id, start_date, end_date)
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [
        OpenIntervalResponse(date=day, start_time=interval.start, end_time=interval.end)
        for day in sorted(by_day)
        for interval in by_day[day]
    ]


@router.post('/{therapist_id}/blocks', response_model=BlockTimeResponse, status_code=status.HTTP_201_CREATED)
def block_time(therapist_id: int, data: BlockTimeRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        outcome = block_therapist_time(
            db,
            therapist_id,
            data.start_time,
            data.end_time,
            reason=data.reason,
            override_existing_appointments=data.override_existing_appointments,
        )

        return BlockTimeResponse(
            id=outcome.block.id,
            therapist_id=outcome.block.therapist_id,
            start_time=outcome.block.start_time,
            end_time=outcome.block.end_time,
            reason=outcome.block.reason,
            cancelled_appointment_ids=outcome.cancelled_appointment_ids,
        )
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/{therapist_id}/blocks', response_model=list[TimeBlockResponse])
def list_blocked_times(
    therapist_id: int,
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        blocks = list_time_blocks(db, therapist_id, to_naive_local(start), to_naive_local(end))
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [
        TimeBlockResponse(
            id=block.id,
            therapist_id=block.therapist_id,
            start_time=block.start_time,
            end_time=block.end_time,
            reason=block.reason,
        )
        for block in blocks
    ]


@router.delete('/{therapist_id}/blocks/{block_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked_time(therapist_id: int, block_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        remove_time_block(db, therapist_id, block_id)
    except BookingError as error:
        raise http_error_from_exception(error) from error
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
