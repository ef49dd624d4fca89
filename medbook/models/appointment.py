"""Appointment model definitions."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index, String, text
from medbook.database import Base


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)
TERMINAL_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.COMPLETED.value)


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    availability_id = Column(Integer, ForeignKey("availability.id", ondelete="SET NULL"))
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    notes = Column(String)
    payment_intent_id = Column(String)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String)
    cancel_reason = Column(String)
    refund_type = Column(String)
    refund_status = Column(String)
    refund_id = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index("idx_appointments_doctor_range", "doctor_id", "start_time", "end_time"),
        # Losing writer of a same-start race gets an IntegrityError instead of a double booking.
        Index(
            "uq_appointments_doctor_start_active",
            "doctor_id",
            "start_time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )
