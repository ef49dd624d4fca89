"""Doctor and slot template model definitions."""

from sqlalchemy import Column, Integer, ForeignKey, String
from medbook.database import Base


class Doctor(Base):
    """Represents a doctor profile owned by a user with the doctor role."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    specialization = Column(String)
    # Bumped by every reservation so concurrent bookings for one doctor serialize on this row.
    booking_version = Column(Integer, nullable=False, default=0)


class SlotTemplate(Base):
    """Per-doctor slot sizing used when materializing bookable slots."""
    __tablename__ = "slot_templates"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), unique=True, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    advance_booking_days = Column(Integer, nullable=False)
