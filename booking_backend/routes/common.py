from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core.errors import BookingError, BookingResult, ErrorKind
from booking_backend.database import SessionLocal, ensure_booking_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE: 422,
    ErrorKind.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def http_error(kind: ErrorKind, message: str | None) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS_CODES[kind],
        detail={'error_kind': kind.value, 'message': message or ''},
    )


def http_error_from_exception(error: BookingError) -> HTTPException:
    return http_error(error.kind, error.message)


def raise_for_result(result: BookingResult) -> BookingResult:
    if not result.success:
        raise http_error(result.error_kind, result.error_message)
    return result


def to_naive_local(value: datetime) -> datetime:
    """Calendars are stored in naive local time; aware inputs are converted."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
