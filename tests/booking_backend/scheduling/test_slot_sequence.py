from datetime import date, datetime, time

import pytest

from booking_backend.scheduling.availability import Interval
from booking_backend.scheduling.slots import SlotSequence

MONDAY = date(2030, 1, 7)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(MONDAY, time(hour, minute))


def test_slots_are_duration_aligned_and_never_overrun_the_interval() -> None:
    slots = list(SlotSequence([Interval(at(9), at(12)), Interval(at(13), at(17))], 60))

    assert [slot.start.hour for slot in slots] == [9, 10, 11, 13, 14, 15, 16]
    assert all(slot.end - slot.start == at(10) - at(9) for slot in slots)


def test_partial_fit_at_end_of_interval_is_dropped() -> None:
    slots = list(SlotSequence([Interval(at(9), at(10, 30))], 60))

    assert slots == [Interval(at(9), at(10))]


def test_custom_step_produces_overlapping_candidates() -> None:
    slots = list(SlotSequence([Interval(at(9), at(10, 30))], 60, step_minutes=15))

    assert [slot.start for slot in slots] == [at(9), at(9, 15), at(9, 30)]


def test_sequence_is_restartable_and_deterministic() -> None:
    sequence = SlotSequence([Interval(at(9), at(12))], 30)

    assert list(sequence) == list(sequence)
    assert len(list(sequence)) == 6


def test_sequence_is_lazy() -> None:
    iterator = iter(SlotSequence([Interval(at(9), at(17))], 60))

    assert next(iterator) == Interval(at(9), at(10))
    assert next(iterator) == Interval(at(10), at(11))


def test_contains_matches_exact_candidate_only() -> None:
    sequence = SlotSequence([Interval(at(9), at(12))], 60)

    assert sequence.contains(Interval(at(10), at(11)))
    assert not sequence.contains(Interval(at(10, 30), at(11, 30)))


@pytest.mark.parametrize(('duration', 'step'), [(0, None), (-15, None), (60, 0), (60, -5)])
def test_non_positive_duration_or_step_is_rejected(duration: int, step: int | None) -> None:
    with pytest.raises(ValueError):
        SlotSequence([Interval(at(9), at(12))], duration, step)
