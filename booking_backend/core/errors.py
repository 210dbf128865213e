"""Error taxonomy shared by the scheduling read path and the booking write path."""

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    NOT_FOUND = 'not_found'
    INVALID_REQUEST = 'invalid_request'
    CONFLICT = 'conflict'
    INVALID_STATE = 'invalid_state'
    TRANSIENT = 'transient'


class BookingError(Exception):
    """Base class for expected booking failures.

    Write operations convert these into a failed ``BookingResult``; read
    operations let them propagate to the caller.
    """

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND


class InvalidRequestError(BookingError):
    kind = ErrorKind.INVALID_REQUEST


class ConflictError(BookingError):
    kind = ErrorKind.CONFLICT


class InvalidStateError(BookingError):
    kind = ErrorKind.INVALID_STATE


class TransientError(BookingError):
    kind = ErrorKind.TRANSIENT


class BookingResult(BaseModel):
    success: bool
    appointment_id: int | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, appointment_id: int) -> 'BookingResult':
        return cls(success=True, appointment_id=appointment_id)

    @classmethod
    def from_error(cls, error: BookingError) -> 'BookingResult':
        return cls(success=False, error_kind=error.kind, error_message=error.message)
