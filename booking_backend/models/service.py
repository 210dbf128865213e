"""Service model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String
from booking_backend.database import Base


class Service(Base):
    """Represents a bookable treatment with a fixed duration."""
    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_services_positive_duration"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
