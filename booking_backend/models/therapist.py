"""Therapist model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from booking_backend.database import Base


therapist_services = Table(
    "therapist_services",
    Base.metadata,
    Column("therapist_id", Integer, ForeignKey("therapists.id"), primary_key=True),
    Column("service_id", Integer, ForeignKey("services.id"), primary_key=True),
)


class Therapist(Base):
    """Represents a therapist whose calendar can be booked."""
    __tablename__ = "therapists"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # Bumped by every committed calendar write; used as a compare-and-swap token.
    booking_version = Column(Integer, default=0, nullable=False)

    services = relationship("Service", secondary=therapist_services, lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
