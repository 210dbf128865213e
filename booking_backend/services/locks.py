from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from booking_backend.core.errors import TransientError


class TherapistLockRegistry:
    """One exclusive lock per therapist, shared by every writer in this process.

    Only serializes writers inside a single process. Writers in other
    processes are kept apart by the booking-version check in the database.
    """

    def __init__(self):
        self._guard = Lock()
        self._locks: dict[int, Lock] = {}

    def _lock_for(self, therapist_id: int) -> Lock:
        with self._guard:
            lock = self._locks.get(therapist_id)
            if lock is None:
                lock = self._locks[therapist_id] = Lock()
            return lock

    @contextmanager
    def hold(self, therapist_id: int, timeout: float) -> Iterator[None]:
        lock = self._lock_for(therapist_id)
        if not lock.acquire(timeout=timeout):
            raise TransientError('The therapist calendar is busy. Please try again.')
        try:
            yield
        finally:
            lock.release()


therapist_locks = TherapistLockRegistry()
