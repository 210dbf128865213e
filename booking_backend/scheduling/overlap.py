"""
Overlap detection.

Drops candidate slots that collide with a therapist's active appointments.
Intervals are half-open, so back-to-back appointments do not overlap.
"""

from datetime import datetime
from typing import Iterable, Protocol

from booking_backend.scheduling.availability import Interval


class AppointmentStore(Protocol):
    def get_active_for_therapist(
        self,
        therapist_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[tuple[datetime, datetime]]: ...


def intervals_overlap(
    existing_start: datetime,
    existing_end: datetime,
    candidate_start: datetime,
    candidate_end: datetime,
) -> bool:
    return existing_start < candidate_end and candidate_start < existing_end


def remove_overlapping(
    candidates: Iterable[Interval],
    busy: Iterable[tuple[datetime, datetime]],
) -> list[Interval]:
    busy = sorted(busy)
    return [
        candidate
        for candidate in candidates
        if not any(intervals_overlap(busy_start, busy_end, candidate.start, candidate.end) for busy_start, busy_end in busy)
    ]


class ConflictChecker:
    def __init__(self, store: AppointmentStore):
        self.store = store

    def filter_free(
        self,
        candidates: Iterable[Interval],
        therapist_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[Interval]:
        busy = self.store.get_active_for_therapist(therapist_id, start, end, exclude_appointment_id)
        return remove_overlapping(candidates, busy)

    def is_free(
        self,
        therapist_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> bool:
        return bool(self.filter_free([Interval(start, end)], therapist_id, start, end, exclude_appointment_id))
