"""Client model definitions."""

from sqlalchemy import Column, Integer, String
from booking_backend.database import Base


class Client(Base):
    """Represents a person who books appointments."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
