"""Doctor lookups and slot template settings."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from medbook.core import config
from medbook.models.doctor import Doctor, SlotTemplate
from medbook.scheduling.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotSettings:
    duration_minutes: int
    buffer_minutes: int
    advance_booking_days: int


def default_slot_settings() -> SlotSettings:
    return SlotSettings(
        duration_minutes=config.DEFAULT_SLOT_DURATION_MINUTES,
        buffer_minutes=config.DEFAULT_BUFFER_MINUTES,
        advance_booking_days=config.DEFAULT_ADVANCE_BOOKING_DAYS,
    )


def get_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if doctor is None:
        raise NotFoundError('Doctor')
    return doctor


def get_doctor_for_user(db: Session, user_id: int) -> Doctor | None:
    return db.query(Doctor).filter(Doctor.user_id == user_id).first()


def get_slot_settings(db: Session, doctor_id: int) -> SlotSettings:
    template = db.query(SlotTemplate).filter(SlotTemplate.doctor_id == doctor_id).first()
    if template is None:
        return default_slot_settings()

    return SlotSettings(
        duration_minutes=template.duration_minutes,
        buffer_minutes=template.buffer_minutes,
        advance_booking_days=template.advance_booking_days,
    )


def validate_slot_settings(settings: SlotSettings) -> None:
    if settings.duration_minutes < config.MIN_SLOT_DURATION_MINUTES:
        raise ValidationError(
            f'Slot duration must be at least {config.MIN_SLOT_DURATION_MINUTES} minutes.'
        )
    if settings.duration_minutes > config.MAX_SLOT_DURATION_MINUTES:
        raise ValidationError('Slot duration cannot exceed 8 hours.')
    if settings.buffer_minutes < 0:
        raise ValidationError('Buffer minutes cannot be negative.')
    if settings.advance_booking_days < 1:
        raise ValidationError('Advance booking days must be at least 1 day.')


def upsert_slot_template(
    db: Session,
    doctor_id: int,
    duration_minutes: int | None = None,
    buffer_minutes: int | None = None,
    advance_booking_days: int | None = None,
) -> SlotSettings:
    get_doctor(db, doctor_id)
    current = get_slot_settings(db, doctor_id)
    settings = SlotSettings(
        duration_minutes=current.duration_minutes if duration_minutes is None else duration_minutes,
        buffer_minutes=current.buffer_minutes if buffer_minutes is None else buffer_minutes,
        advance_booking_days=(
            current.advance_booking_days if advance_booking_days is None else advance_booking_days
        ),
    )
    validate_slot_settings(settings)

    template = db.query(SlotTemplate).filter(SlotTemplate.doctor_id == doctor_id).first()
    if template is None:
        template = SlotTemplate(doctor_id=doctor_id)
        db.add(template)

    template.duration_minutes = settings.duration_minutes
    template.buffer_minutes = settings.buffer_minutes
    template.advance_booking_days = settings.advance_booking_days
    db.commit()

    logger.info('Slot template saved for doctor %s: %s', doctor_id, settings)
    return settings
