from datetime import date, datetime, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from booking_backend.routes.availability_routes import (
    BlockTimeRequest,
    SetAvailabilityRequest,
    block_time,
    get_therapist_day,
    list_blocked_times,
    list_open_intervals,
    remove_blocked_time,
    set_therapist_availability,
)

MONDAY = date(2030, 1, 7)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_backend.routes.availability_routes.ensure_database_ready', lambda: None)


def test_set_availability_request_requires_exactly_one_target() -> None:
    with pytest.raises(ValidationError):
        SetAvailabilityRequest(start_time=time(9, 0), end_time=time(17, 0))

    with pytest.raises(ValidationError):
        SetAvailabilityRequest(specific_date=MONDAY, day_of_week=0, start_time=time(9, 0), end_time=time(17, 0))


def test_set_availability_request_rejects_out_of_range_weekday() -> None:
    with pytest.raises(ValidationError):
        SetAvailabilityRequest(day_of_week=7, start_time=time(9, 0), end_time=time(17, 0))


def test_set_availability_request_normalizes_notes() -> None:
    request = SetAvailabilityRequest(specific_date=MONDAY, is_available=False, notes='  ')

    assert request.notes is None


def test_set_therapist_availability_returns_saved_rule(db, world) -> None:
    response = set_therapist_availability(
        world.therapist_id,
        SetAvailabilityRequest(
            specific_date=MONDAY,
            start_time=time(8, 0),
            end_time=time(12, 0),
            notes=' Short day ',
        ),
        db=db,
    )

    assert response.therapist_id == world.therapist_id
    assert response.specific_date == MONDAY
    assert response.day_of_week is None
    assert (response.start_time, response.end_time) == (time(8, 0), time(12, 0))
    assert response.notes == 'Short day'


def test_set_therapist_availability_maps_invalid_rule_to_400(db, world) -> None:
    with pytest.raises(HTTPException) as exception_info:
        set_therapist_availability(
            world.therapist_id,
            SetAvailabilityRequest(day_of_week=1, start_time=time(17, 0), end_time=time(9, 0)),
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == {
        'error_kind': 'invalid_request',
        'message': 'Start time must be before end time.',
    }


def test_set_therapist_availability_maps_unknown_therapist_to_404(db, world) -> None:
    with pytest.raises(HTTPException) as exception_info:
        set_therapist_availability(
            999,
            SetAvailabilityRequest(day_of_week=1, start_time=time(9, 0), end_time=time(17, 0)),
            db=db,
        )

    assert exception_info.value.status_code == 404


def test_get_therapist_day_reports_weekly_hours(db, world) -> None:
    response = get_therapist_day(world.therapist_id, target_date=MONDAY, db=db)

    assert response.is_available is True
    assert (response.start_time, response.end_time) == (time(9, 0), time(17, 0))
    assert (response.break_start_time, response.break_end_time) == (time(12, 0), time(13, 0))


def test_get_therapist_day_without_rule_is_unavailable(db, world) -> None:
    response = get_therapist_day(world.therapist_id, target_date=date(2030, 1, 8), db=db)

    assert response.is_available is False
    assert response.start_time is None


def test_list_open_intervals_splits_around_break(db, world) -> None:
    intervals = list_open_intervals(world.therapist_id, start_date=MONDAY, end_date=date(2030, 1, 9), db=db)

    assert [(interval.start_time, interval.end_time) for interval in intervals] == [
        (datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 12, 0)),
        (datetime(2030, 1, 7, 13, 0), datetime(2030, 1, 7, 17, 0)),
    ]
    assert {interval.date for interval in intervals} == {MONDAY}


def test_list_open_intervals_rejects_empty_range(db, world) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_open_intervals(world.therapist_id, start_date=MONDAY, end_date=MONDAY, db=db)

    assert exception_info.value.status_code == 400


def test_list_open_intervals_maps_unknown_therapist_to_404(db, world) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_open_intervals(999, start_date=MONDAY, end_date=date(2030, 1, 8), db=db)

    assert exception_info.value.status_code == 404


def test_block_time_request_rejects_reversed_range() -> None:
    with pytest.raises(ValidationError):
        BlockTimeRequest(start_time=datetime(2030, 1, 7, 12, 0), end_time=datetime(2030, 1, 7, 9, 0))


def test_block_time_request_normalizes_reason() -> None:
    request = BlockTimeRequest(
        start_time=datetime(2030, 1, 7, 9, 0),
        end_time=datetime(2030, 1, 7, 12, 0),
        reason='   ',
    )

    assert request.reason is None


def test_block_time_route_stores_block_and_lists_it(db, world) -> None:
    response = block_time(
        world.therapist_id,
        BlockTimeRequest(
            start_time=datetime(2030, 1, 7, 13, 0),
            end_time=datetime(2030, 1, 7, 15, 0),
            reason=' Team meeting ',
        ),
        db=db,
    )

    assert response.reason == 'Team meeting'
    assert response.cancelled_appointment_ids == []

    blocks = list_blocked_times(
        world.therapist_id,
        start=datetime(2030, 1, 7, 0, 0),
        end=datetime(2030, 1, 8, 0, 0),
        db=db,
    )
    assert [block.id for block in blocks] == [response.id]

    intervals = list_open_intervals(world.therapist_id, start_date=MONDAY, end_date=date(2030, 1, 8), db=db)
    assert [(interval.start_time.hour, interval.end_time.hour) for interval in intervals] == [(9, 12), (15, 17)]


def test_remove_blocked_time_route(db, world) -> None:
    response = block_time(
        world.therapist_id,
        BlockTimeRequest(start_time=datetime(2030, 1, 7, 9, 0), end_time=datetime(2030, 1, 7, 10, 0)),
        db=db,
    )

    assert remove_blocked_time(world.therapist_id, response.id, db=db) is None

    with pytest.raises(HTTPException) as exception_info:
        remove_blocked_time(world.therapist_id, response.id, db=db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail['message'] == 'Blocked time not found.'


def test_block_time_route_maps_unknown_therapist_to_404(db, world) -> None:
    with pytest.raises(HTTPException) as exception_info:
        block_time(
            999,
            BlockTimeRequest(start_time=datetime(2030, 1, 7, 9, 0), end_time=datetime(2030, 1, 7, 10, 0)),
            db=db,
        )

    assert exception_info.value.status_code == 404
