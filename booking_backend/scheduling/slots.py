"""
Slot generation.

Cuts open intervals into candidate slots exactly as long as the service.
Starts are aligned to the beginning of each interval and advance by the step
(the service duration unless configured otherwise).
"""

from datetime import timedelta
from typing import Iterable, Iterator

from booking_backend.scheduling.availability import Interval


class SlotSequence:
    """Lazy, finite and restartable sequence of candidate slots.

    Each call to ``iter()`` starts over from the first interval, so the same
    sequence can be consumed several times with identical results.
    """

    def __init__(self, intervals: Iterable[Interval], duration_minutes: int, step_minutes: int | None = None):
        if duration_minutes <= 0:
            raise ValueError('Slot duration must be positive.')
        if step_minutes is not None and step_minutes <= 0:
            raise ValueError('Slot step must be positive.')

        self.intervals = tuple(intervals)
        self.duration = timedelta(minutes=duration_minutes)
        self.step = timedelta(minutes=step_minutes or duration_minutes)

    def __iter__(self) -> Iterator[Interval]:
        for interval in self.intervals:
            current_start = interval.start

            while current_start + self.duration <= interval.end:
                yield Interval(current_start, current_start + self.duration)
                current_start += self.step

    def contains(self, candidate: Interval) -> bool:
        return any(slot == candidate for slot in self)
