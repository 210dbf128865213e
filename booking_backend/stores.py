"""SQLAlchemy-backed stores consumed by the scheduling engine."""

from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from booking_backend.core.errors import NotFoundError
from booking_backend.models.appointment import Appointment
from booking_backend.models.availability import AvailabilityRule
from booking_backend.models.client import Client
from booking_backend.models.service import Service
from booking_backend.models.therapist import Therapist, therapist_services
from booking_backend.models.time_block import TimeBlock
from booking_backend.scheduling.availability import Interval, OverrideRule, RecurringRule, RuleEntry, WorkWindow
from booking_backend.scheduling.status import ACTIVE_STATUSES, AppointmentStatus


@dataclass(frozen=True)
class ServiceInfo:
    id: int
    name: str
    duration_minutes: int
    is_active: bool


def to_rule_entry(row: AvailabilityRule) -> RuleEntry:
    window = WorkWindow(
        is_available=bool(row.is_available),
        start_time=row.start_time,
        end_time=row.end_time,
        break_start_time=row.break_start_time,
        break_end_time=row.break_end_time,
    )
    if row.specific_date is not None:
        return OverrideRule(specific_date=row.specific_date, window=window)
    return RecurringRule(day_of_week=row.day_of_week, window=window)


class SqlAvailabilityStore:
    def __init__(self, db: Session):
        self.db = db

    def therapist_exists(self, therapist_id: int) -> bool:
        return self.db.get(Therapist, therapist_id) is not None

    def get_therapist(self, therapist_id: int) -> Therapist | None:
        return self.db.get(Therapist, therapist_id)

    def get_rules(self, therapist_id: int, start_date: date, end_date: date) -> list[RuleEntry]:
        rows = self.db.query(AvailabilityRule).filter(
            AvailabilityRule.therapist_id == therapist_id,
            (
                AvailabilityRule.day_of_week.is_not(None)
                | (
                    (AvailabilityRule.specific_date >= start_date)
                    & (AvailabilityRule.specific_date < end_date)
                )
            ),
        ).order_by(AvailabilityRule.id.asc()).all()

        return [to_rule_entry(row) for row in rows]

    def get_blocks(self, therapist_id: int, start: datetime, end: datetime) -> list[Interval]:
        rows = self.list_blocks(therapist_id, start, end)
        return [Interval(row.start_time, row.end_time) for row in rows]

    def list_blocks(self, therapist_id: int, start: datetime, end: datetime) -> list[TimeBlock]:
        return self.db.query(TimeBlock).filter(
            TimeBlock.therapist_id == therapist_id,
            TimeBlock.start_time < end,
            TimeBlock.end_time > start,
        ).order_by(TimeBlock.start_time.asc()).all()

    def add_block(self, block: TimeBlock) -> TimeBlock:
        self.db.add(block)
        self.db.flush()
        return block

    def remove_block(self, therapist_id: int, block_id: int) -> bool:
        block = self.db.get(TimeBlock, block_id)
        if block is None or block.therapist_id != therapist_id:
            return False
        self.db.delete(block)
        self.db.flush()
        return True

    def upsert_rule(
        self,
        therapist_id: int,
        *,
        specific_date: date | None,
        day_of_week: int | None,
        window: WorkWindow,
        notes: str | None = None,
    ) -> AvailabilityRule:
        query = self.db.query(AvailabilityRule).filter(AvailabilityRule.therapist_id == therapist_id)
        if specific_date is not None:
            query = query.filter(AvailabilityRule.specific_date == specific_date)
        else:
            query = query.filter(AvailabilityRule.day_of_week == day_of_week)

        rule = query.first()
        if rule is None:
            rule = AvailabilityRule(
                therapist_id=therapist_id,
                specific_date=specific_date,
                day_of_week=day_of_week,
            )
            self.db.add(rule)

        rule.is_available = window.is_available
        rule.start_time = window.start_time
        rule.end_time = window.end_time
        rule.break_start_time = window.break_start_time
        rule.break_end_time = window.break_end_time
        rule.notes = notes
        self.db.flush()

        return rule


class SqlAppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int) -> Appointment | None:
        return self.db.get(Appointment, appointment_id)

    def get_fresh(self, appointment_id: int) -> Appointment | None:
        """Re-read the row, replacing whatever this session has cached for it."""
        return self.db.get(Appointment, appointment_id, populate_existing=True, with_for_update=True)

    def get_active_for_therapist(
        self,
        therapist_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[tuple[datetime, datetime]]:
        query = self.db.query(Appointment.start_time, Appointment.end_time).filter(
            Appointment.therapist_id == therapist_id,
            Appointment.status.in_([status.value for status in ACTIVE_STATUSES]),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)

        return [(row_start, row_end) for row_start, row_end in query.order_by(Appointment.start_time.asc()).all()]

    def list_for_therapist(self, therapist_id: int, start: datetime, end: datetime) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.therapist_id == therapist_id,
            Appointment.start_time < end,
            Appointment.end_time > start,
        ).order_by(Appointment.start_time.asc()).all()

    def list_for_client(self, client_id: int) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.client_id == client_id,
        ).order_by(Appointment.start_time.asc()).all()

    def list_scheduled_for_therapist(self, therapist_id: int, start: datetime, end: datetime) -> list[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.therapist_id == therapist_id,
            Appointment.status == AppointmentStatus.SCHEDULED.value,
            Appointment.start_time < end,
            Appointment.end_time > start,
        ).populate_existing().with_for_update().order_by(Appointment.start_time.asc()).all()

    def insert(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def update_status(
        self,
        appointment_id: int,
        status: AppointmentStatus,
        reason: str | None = None,
        changed_at: datetime | None = None,
    ) -> Appointment:
        appointment = self.get(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')

        appointment.status = status.value
        if status is AppointmentStatus.CANCELLED:
            appointment.cancellation_reason = reason
            appointment.cancelled_at = changed_at or datetime.now()
        self.db.flush()

        return appointment

    def move(self, appointment: Appointment, start: datetime, end: datetime) -> Appointment:
        appointment.start_time = start
        appointment.end_time = end
        self.db.flush()
        return appointment

    def read_booking_version(self, therapist_id: int) -> int | None:
        return self.db.execute(
            select(Therapist.booking_version).where(Therapist.id == therapist_id)
        ).scalar_one_or_none()

    def bump_booking_version(self, therapist_id: int, expected_version: int) -> bool:
        result = self.db.execute(
            update(Therapist)
            .where(Therapist.id == therapist_id, Therapist.booking_version == expected_version)
            .values(booking_version=Therapist.booking_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlServiceCatalog:
    def __init__(self, db: Session):
        self.db = db

    def get_service(self, service_id: int) -> ServiceInfo:
        service = self.db.get(Service, service_id)
        if service is None:
            raise NotFoundError(f'Service {service_id} not found.')

        return ServiceInfo(
            id=service.id,
            name=service.name,
            duration_minutes=service.duration_minutes,
            is_active=bool(service.is_active),
        )

    def get_duration(self, service_id: int) -> int:
        return self.get_service(service_id).duration_minutes

    def therapist_offers(self, therapist_id: int, service_id: int) -> bool:
        return self.db.execute(
            select(therapist_services.c.therapist_id).where(
                therapist_services.c.therapist_id == therapist_id,
                therapist_services.c.service_id == service_id,
            )
        ).first() is not None

    def therapists_offering(self, service_id: int) -> list[int]:
        rows = self.db.execute(
            select(Therapist.id)
            .join(therapist_services, therapist_services.c.therapist_id == Therapist.id)
            .where(therapist_services.c.service_id == service_id, Therapist.is_active.is_(True))
            .order_by(Therapist.id.asc())
        ).all()
        return [therapist_id for (therapist_id,) in rows]


class SqlClientDirectory:
    def __init__(self, db: Session):
        self.db = db

    def client_exists(self, client_id: int) -> bool:
        return self.db.get(Client, client_id) is not None
