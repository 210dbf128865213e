"""Time block model definitions."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from booking_backend.database import Base


class TimeBlock(Base):
    """A stretch of time in which a therapist takes no appointments."""
    __tablename__ = "time_blocks"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_time_blocks_positive_range"),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
