"""Availability model definitions."""

from datetime import datetime

from sqlalchemy import Column, Integer, Date, DateTime, Boolean, ForeignKey
from medbook.database import Base


class Availability(Base):
    """Represents a doctor's recurring weekly window or a one-time extra window.

    Recurring rows only use the time-of-day part of ``start_time``/``end_time``;
    their date part is an arbitrary anchor.
    """
    __tablename__ = "availability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    day_of_week = Column(Integer)  # 0=Sunday..6=Saturday, recurring only
    valid_from = Column(Date)
    valid_to = Column(Date)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
