from datetime import date, datetime, time

import pytest

from booking_backend.core.errors import ConflictError, ErrorKind, InvalidRequestError, NotFoundError
from booking_backend.models.appointment import Appointment
from booking_backend.models.therapist import Therapist
from booking_backend.models.time_block import TimeBlock
from booking_backend.services.availability import block_therapist_time, list_time_blocks, remove_time_block
from booking_backend.services.guard import CalendarWriteGuard
from booking_backend.services.locks import TherapistLockRegistry

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def guard(db) -> CalendarWriteGuard:
    return CalendarWriteGuard(db, locks=TherapistLockRegistry(), retry_backoff=0)


def slot_hours(coordinator, world) -> list[int]:
    slots = coordinator.find_available_slots(world.service_id, world.therapist_id, MONDAY, TUESDAY)
    return [slot.start_time.hour for slot in slots]


def test_block_removes_slots_and_rejects_bookings_inside_it(db, world, guard, coordinator) -> None:
    outcome = block_therapist_time(db, world.therapist_id, at(13), at(15), reason='Training', guard=guard)

    assert outcome.cancelled_appointment_ids == []
    assert outcome.block.reason == 'Training'
    assert slot_hours(coordinator, world) == [9, 10, 11, 15, 16]
    result = coordinator.book(world.client_id, world.therapist_id, world.service_id, at(14))
    assert result.error_kind is ErrorKind.CONFLICT


def test_block_over_scheduled_appointment_is_rejected_without_override(db, world, guard, coordinator) -> None:
    booked = coordinator.book(world.client_id, world.therapist_id, world.service_id, at(10))

    with pytest.raises(ConflictError) as exception_info:
        block_therapist_time(db, world.therapist_id, at(9), at(12), guard=guard)

    assert exception_info.value.message.startswith('There are 1 existing appointments during this time period.')
    assert db.query(TimeBlock).count() == 0
    assert db.get(Appointment, booked.appointment_id).status == 'scheduled'


def test_block_with_override_cancels_scheduled_appointments(db, world, guard, coordinator) -> None:
    kept = coordinator.book(world.client_id, world.therapist_id, world.service_id, at(15))
    first = coordinator.book(world.client_id, world.therapist_id, world.service_id, at(9))
    second = coordinator.book(world.other_client_id, world.therapist_id, world.service_id, at(11))
    version = db.get(Therapist, world.therapist_id).booking_version

    outcome = block_therapist_time(
        db,
        world.therapist_id,
        at(9),
        at(13),
        reason='Sick leave',
        override_existing_appointments=True,
        guard=guard,
    )

    assert sorted(outcome.cancelled_appointment_ids) == sorted([first.appointment_id, second.appointment_id])
    for appointment_id in outcome.cancelled_appointment_ids:
        appointment = db.get(Appointment, appointment_id)
        assert appointment.status == 'cancelled'
        assert appointment.cancellation_reason == 'Cancelled due to therapist unavailability: Sick leave'
        assert appointment.cancelled_at is not None
    assert db.get(Appointment, kept.appointment_id).status == 'scheduled'
    assert db.get(Therapist, world.therapist_id).booking_version == version + 1


def test_completed_appointments_do_not_prevent_a_block(db, world, guard, coordinator) -> None:
    booked = coordinator.book(world.client_id, world.therapist_id, world.service_id, at(10))
    coordinator.complete(booked.appointment_id)

    outcome = block_therapist_time(db, world.therapist_id, at(9), at(12), guard=guard)

    assert outcome.cancelled_appointment_ids == []
    assert db.get(Appointment, booked.appointment_id).status == 'completed'


def test_block_validation(db, world, guard) -> None:
    with pytest.raises(InvalidRequestError):
        block_therapist_time(db, world.therapist_id, at(12), at(12), guard=guard)

    with pytest.raises(NotFoundError):
        block_therapist_time(db, 999, at(9), at(10), guard=guard)


def test_removing_block_restores_slots(db, world, guard, coordinator) -> None:
    outcome = block_therapist_time(db, world.therapist_id, at(13), at(15), guard=guard)

    remove_time_block(db, world.therapist_id, outcome.block.id, guard=guard)

    assert slot_hours(coordinator, world) == [9, 10, 11, 13, 14, 15, 16]
    with pytest.raises(NotFoundError):
        remove_time_block(db, world.therapist_id, outcome.block.id, guard=guard)


def test_list_time_blocks_returns_overlapping_blocks_in_order(db, world, guard) -> None:
    block_therapist_time(db, world.therapist_id, at(15), at(16), guard=guard)
    block_therapist_time(db, world.therapist_id, at(9), at(10), guard=guard)
    block_therapist_time(db, world.therapist_id, at(9, day=TUESDAY), at(10, day=TUESDAY), guard=guard)

    blocks = list_time_blocks(db, world.therapist_id, at(0), at(0, day=TUESDAY))

    assert [(block.start_time, block.end_time) for block in blocks] == [(at(9), at(10)), (at(15), at(16))]
    with pytest.raises(NotFoundError):
        list_time_blocks(db, 999, at(0), at(0, day=TUESDAY))
