"""Availability rule model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Date, ForeignKey, Integer, String, Time
from booking_backend.database import Base


class AvailabilityRule(Base):
    """Working hours for a therapist on one weekday or one specific date."""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint(
            "(specific_date IS NULL) <> (day_of_week IS NULL)",
            name="ck_availability_rules_date_or_weekday",
        ),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False)
    specific_date = Column(Date, nullable=True)
    day_of_week = Column(Integer, nullable=True)  # Monday == 0
    is_available = Column(Boolean, default=True, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    break_start_time = Column(Time, nullable=True)
    break_end_time = Column(Time, nullable=True)
    notes = Column(String, nullable=True)
