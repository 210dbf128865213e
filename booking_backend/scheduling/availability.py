"""
Availability resolution.

Turns a therapist's stored rules into concrete open intervals per day:
- Override rules (bound to one calendar date) win over recurring rules
- Recurring rules (bound to a weekday) apply to every other matching date
- The break, if any, is cut out of the work window
- Time blocks (one-off unavailability such as a conference) are cut out last
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, NamedTuple, Protocol, Union

from booking_backend.core.errors import NotFoundError

logger = logging.getLogger(__name__)


class Interval(NamedTuple):
    start: datetime
    end: datetime


@dataclass(frozen=True)
class WorkWindow:
    is_available: bool
    start_time: time | None = None
    end_time: time | None = None
    break_start_time: time | None = None
    break_end_time: time | None = None


@dataclass(frozen=True)
class OverrideRule:
    specific_date: date
    window: WorkWindow


@dataclass(frozen=True)
class RecurringRule:
    day_of_week: int
    window: WorkWindow


RuleEntry = Union[OverrideRule, RecurringRule]


class AvailabilityStore(Protocol):
    def therapist_exists(self, therapist_id: int) -> bool: ...

    def get_rules(self, therapist_id: int, start_date: date, end_date: date) -> list[RuleEntry]: ...

    def get_blocks(self, therapist_id: int, start: datetime, end: datetime) -> list[Interval]: ...


def iterate_dates(start_date: date, end_date: date) -> Iterable[date]:
    current = start_date
    while current < end_date:
        yield current
        current += timedelta(days=1)


def subtract_interval(interval: Interval, block: Interval) -> list[Interval]:
    """Remove ``block`` from ``interval``; returns zero, one or two pieces."""
    if block.end <= interval.start or block.start >= interval.end:
        return [interval]

    pieces = []
    if block.start > interval.start:
        pieces.append(Interval(interval.start, block.start))
    if block.end < interval.end:
        pieces.append(Interval(block.end, interval.end))
    return pieces


def subtract_blocks(intervals: Iterable[Interval], blocks: Iterable[Interval]) -> list[Interval]:
    remaining = list(intervals)
    for block in blocks:
        remaining = [piece for interval in remaining for piece in subtract_interval(interval, block)]
    return remaining


def select_window(rules: Iterable[RuleEntry], target_date: date) -> WorkWindow | None:
    """Pick the rule that governs ``target_date``: override first, then weekday."""
    recurring = None

    for rule in rules:
        if isinstance(rule, OverrideRule):
            if rule.specific_date == target_date:
                return rule.window
        elif rule.day_of_week == target_date.weekday() and recurring is None:
            recurring = rule.window

    return recurring


def open_intervals_for_window(window: WorkWindow, target_date: date) -> list[Interval]:
    if not window.is_available:
        return []

    if window.start_time is None or window.end_time is None:
        logger.warning('Availability rule for %s is marked available but has no work hours', target_date)
        return []

    if window.start_time >= window.end_time:
        logger.warning('Availability rule for %s has an empty work window', target_date)
        return []

    work = Interval(
        datetime.combine(target_date, window.start_time),
        datetime.combine(target_date, window.end_time),
    )

    if window.break_start_time is None or window.break_end_time is None:
        return [work]

    # Breaks reaching outside the work window are clamped to it.
    break_start = max(datetime.combine(target_date, window.break_start_time), work.start)
    break_end = min(datetime.combine(target_date, window.break_end_time), work.end)
    if break_start >= break_end:
        return [work]

    return subtract_interval(work, Interval(break_start, break_end))


def resolve_open_intervals(
    rules: Iterable[RuleEntry],
    start_date: date,
    end_date: date,
    blocks: Iterable[Interval] = (),
) -> dict[date, list[Interval]]:
    """Open intervals for every date in ``[start_date, end_date)`` that has any."""
    rules = list(rules)
    blocks = sorted(blocks)
    result: dict[date, list[Interval]] = {}

    for current_date in iterate_dates(start_date, end_date):
        window = select_window(rules, current_date)
        if window is None:
            continue

        intervals = subtract_blocks(open_intervals_for_window(window, current_date), blocks)
        if intervals:
            result[current_date] = sorted(intervals)

    return result


class AvailabilityResolver:
    def __init__(self, store: AvailabilityStore):
        self.store = store

    def resolve(self, therapist_id: int, start_date: date, end_date: date) -> dict[date, list[Interval]]:
        if not self.store.therapist_exists(therapist_id):
            raise NotFoundError(f'Therapist {therapist_id} not found.')

        rules = self.store.get_rules(therapist_id, start_date, end_date)
        blocks = self.store.get_blocks(
            therapist_id,
            datetime.combine(start_date, time.min),
            datetime.combine(end_date, time.min),
        )
        return resolve_open_intervals(rules, start_date, end_date, blocks)

    def resolve_flat(self, therapist_id: int, start_date: date, end_date: date) -> list[Interval]:
        by_day = self.resolve(therapist_id, start_date, end_date)
        return [interval for day in sorted(by_day) for interval in by_day[day]]
