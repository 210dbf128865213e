import os
from datetime import date, datetime, time
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_backend.database import Base  # noqa: E402
from booking_backend.models.availability import AvailabilityRule  # noqa: E402
from booking_backend.models.client import Client  # noqa: E402
from booking_backend.models.service import Service  # noqa: E402
from booking_backend.models.therapist import Therapist  # noqa: E402
from booking_backend.services.booking import BookingCoordinator  # noqa: E402
from booking_backend.services.guard import CalendarWriteGuard  # noqa: E402
from booking_backend.services.locks import TherapistLockRegistry  # noqa: E402

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
FIXED_NOW = datetime(2030, 1, 1, 8, 0)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


def seed_world(db) -> SimpleNamespace:
    massage = Service(name='Swedish Massage', duration_minutes=60, is_active=True)
    therapist = Therapist(first_name='Dana', last_name='Reyes', is_active=True, booking_version=0)
    therapist.services.append(massage)
    client = Client(email='client@example.com', first_name='Sam', last_name='Lee')
    other_client = Client(email='other@example.com', first_name='Alex', last_name='Kim')
    db.add_all([massage, therapist, client, other_client])
    db.flush()

    db.add(
        AvailabilityRule(
            therapist_id=therapist.id,
            day_of_week=MONDAY.weekday(),
            is_available=True,
            start_time=time(9, 0),
            end_time=time(17, 0),
            break_start_time=time(12, 0),
            break_end_time=time(13, 0),
        )
    )
    db.commit()

    return SimpleNamespace(
        therapist_id=therapist.id,
        service_id=massage.id,
        client_id=client.id,
        other_client_id=other_client.id,
    )


def build_coordinator(db, locks: TherapistLockRegistry | None = None, **guard_options) -> BookingCoordinator:
    guard_options.setdefault('retry_backoff', 0)
    guard = CalendarWriteGuard(db, locks=locks or TherapistLockRegistry(), **guard_options)
    return BookingCoordinator(db, clock=lambda: FIXED_NOW, slot_step_minutes=0, guard=guard)


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def world(db) -> SimpleNamespace:
    return seed_world(db)


@pytest.fixture
def coordinator(db, world) -> BookingCoordinator:
    return build_coordinator(db)


@pytest.fixture
def make_coordinator():
    return build_coordinator


@pytest.fixture
def seed():
    return seed_world
