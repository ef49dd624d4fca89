"""Creating and reading appointments."""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medbook.core import config
from medbook.models.appointment import Appointment, AppointmentStatus
from medbook.models.user import User
from medbook.scheduling.booking_guard import SLOT_UNAVAILABLE_MESSAGE, reserve
from medbook.scheduling.doctors import get_slot_settings
from medbook.scheduling.errors import ConflictError, NotFoundError, SchedulingError, ValidationError
from medbook.scheduling.time_ranges import to_local_naive, validate_range

logger = logging.getLogger(__name__)


def normalize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None

    normalized = notes.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValidationError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def validate_booking_window(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
) -> None:
    validate_range(start_time, end_time)

    if start_time <= now:
        raise ValidationError('Appointments must be scheduled in the future.')

    advance_booking_days = get_slot_settings(db, doctor_id).advance_booking_days
    # Same horizon rule as slot materialization: the whole appointment must end inside it.
    if end_time > now + timedelta(days=advance_booking_days):
        raise ValidationError(f'Appointments can only be booked within the next {advance_booking_days} days.')


def get_appointment(db: Session, appointment_id: int, for_update: bool = False) -> Appointment:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if for_update:
        query = query.with_for_update()

    appointment = query.first()
    if appointment is None:
        raise NotFoundError('Appointment')
    return appointment


def book_appointment(
    db: Session,
    patient_id: int,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime | None = None,
    notes: str | None = None,
    payment_intent_id: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Reserve ``[start_time, end_time)`` with the booking guard and record a pending appointment.

    ``end_time`` defaults to the doctor's slot duration. Both steps share one
    transaction; any failure rolls it back completely.
    """
    now = now or datetime.now()
    start_time = to_local_naive(start_time)
    if end_time is None:
        end_time = start_time + timedelta(minutes=get_slot_settings(db, doctor_id).duration_minutes)
    end_time = to_local_naive(end_time)

    notes = normalize_notes(notes)
    validate_booking_window(db, doctor_id, start_time, end_time, now)

    if db.query(User.id).filter(User.id == patient_id).first() is None:
        raise NotFoundError('Patient')

    try:
        availability = reserve(db, doctor_id, start_time, end_time)
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            availability_id=availability.id,
            start_time=start_time,
            end_time=end_time,
            status=AppointmentStatus.PENDING.value,
            notes=notes,
            payment_intent_id=payment_intent_id,
        )
        db.add(appointment)
        db.flush()
        db.commit()
    except SchedulingError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.warning('Concurrent booking lost for doctor %s at %s', doctor_id, start_time)
        raise ConflictError(SLOT_UNAVAILABLE_MESSAGE) from exc

    db.refresh(appointment)
    logger.info(
        'Appointment %s booked for patient %s with doctor %s at %s',
        appointment.id,
        patient_id,
        doctor_id,
        start_time,
    )
    return appointment


def list_patient_appointments(db: Session, patient_id: int, include_past: bool = False, now: datetime | None = None) -> list[Appointment]:
    query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
    if not include_past:
        query = query.filter(Appointment.end_time > (now or datetime.now()))
    return query.order_by(Appointment.start_time.asc()).all()


def list_doctor_appointments(
    db: Session,
    doctor_id: int,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    status: AppointmentStatus | None = None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
    if start_time is not None:
        query = query.filter(Appointment.end_time > start_time)
    if end_time is not None:
        query = query.filter(Appointment.start_time < end_time)
    if status is not None:
        query = query.filter(Appointment.status == status.value)
    return query.order_by(Appointment.start_time.asc()).all()
