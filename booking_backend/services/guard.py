"""
Atomic guard for writes to a therapist's calendar.

Every write runs inside one transaction that:
1. records the therapist's booking_version
2. re-validates and applies the change
3. bumps booking_version only if it still holds the recorded value

A failed bump means another writer committed in between, so the transaction
is rolled back and the whole write is re-run. Retries are bounded; when they
run out the caller gets a TransientError.
"""

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import ConflictError, NotFoundError, TransientError
from booking_backend.database import NO_OVERLAP_CONSTRAINT
from booking_backend.services.locks import TherapistLockRegistry, therapist_locks
from booking_backend.stores import SqlAppointmentStore

logger = logging.getLogger(__name__)

T = TypeVar('T')

GENERIC_CONFLICT_MESSAGE = 'The selected time slot is no longer available.'
BUSY_MESSAGE = 'The therapist calendar is busy. Please try again.'

RETRYABLE_SQLSTATES = {
    '40001',  # serialization_failure
    '40P01',  # deadlock_detected
    '55P03',  # lock_not_available
}


def is_retryable_operational_error(exc: OperationalError) -> bool:
    orig = getattr(exc, 'orig', None)
    sqlstate = getattr(orig, 'pgcode', None) or getattr(orig, 'sqlstate', None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True

    message = str(exc).lower()
    return 'database is locked' in message or 'deadlock detected' in message


def is_overlap_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, 'orig', None)
    diag = getattr(orig, 'diag', None)
    constraint_name = getattr(diag, 'constraint_name', '') or ''
    if constraint_name == NO_OVERLAP_CONSTRAINT:
        return True
    return NO_OVERLAP_CONSTRAINT in str(orig)


class CalendarWriteGuard:
    def __init__(
        self,
        db: Session,
        appointment_store: SqlAppointmentStore | None = None,
        locks: TherapistLockRegistry | None = None,
        lock_timeout: float | None = None,
        max_attempts: int | None = None,
        retry_backoff: float | None = None,
    ):
        self.db = db
        self.appointments = appointment_store or SqlAppointmentStore(db)
        self.locks = locks or therapist_locks
        self.lock_timeout = lock_timeout if lock_timeout is not None else config.BOOKING_LOCK_TIMEOUT_SECONDS
        self.max_attempts = max_attempts if max_attempts is not None else config.BOOKING_MAX_ATTEMPTS
        self.retry_backoff = retry_backoff if retry_backoff is not None else config.BOOKING_RETRY_BACKOFF_SECONDS

    def _wait_before_retry(self, attempt: int) -> None:
        if attempt < self.max_attempts and self.retry_backoff > 0:
            time.sleep(self.retry_backoff * attempt)

    def run(self, therapist_id: int, write: Callable[[], T]) -> T:
        with self.locks.hold(therapist_id, self.lock_timeout):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    seen_version = self.appointments.read_booking_version(therapist_id)
                    if seen_version is None:
                        raise NotFoundError(f'Therapist {therapist_id} not found.')

                    result = write()

                    if not self.appointments.bump_booking_version(therapist_id, seen_version):
                        self.db.rollback()
                        logger.warning(
                            'Calendar for therapist %s changed during write (attempt %s/%s)',
                            therapist_id, attempt, self.max_attempts,
                        )
                        self._wait_before_retry(attempt)
                        continue

                    self.db.commit()
                    return result
                except IntegrityError as exc:
                    self.db.rollback()
                    if is_overlap_violation(exc):
                        raise ConflictError(GENERIC_CONFLICT_MESSAGE) from exc
                    raise
                except OperationalError as exc:
                    self.db.rollback()
                    if not is_retryable_operational_error(exc):
                        raise
                    logger.warning(
                        'Database contention on therapist %s calendar (attempt %s/%s): %s',
                        therapist_id, attempt, self.max_attempts, exc,
                    )
                    self._wait_before_retry(attempt)
                except Exception:
                    self.db.rollback()
                    raise

        logger.error('Giving up on therapist %s calendar write after %s attempts', therapist_id, self.max_attempts)
        raise TransientError(BUSY_MESSAGE)
