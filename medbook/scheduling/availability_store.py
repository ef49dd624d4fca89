"""Create, edit, delete and list a doctor's availability windows.

Two kinds of rows live in the ``availability`` table:

* recurring windows, one weekday each, compared by time of day only;
* one-time windows, a concrete datetime range on a single calendar date that
  adds availability outside the weekly pattern.

Deleting availability never touches appointments already booked against it.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from medbook.core import config
from medbook.models.availability import Availability
from medbook.scheduling.doctors import get_doctor
from medbook.scheduling.errors import NotFoundError, SchedulingError, ValidationError
from medbook.scheduling.time_ranges import (
    at_minutes,
    day_of_week as weekday_index,
    minutes_of_day,
    overlaps,
    parse_time_of_day,
    to_local_naive,
    validate_range,
)

logger = logging.getLogger(__name__)

# Recurring rows store their time of day on this fixed date.
RECURRING_ANCHOR_DATE = date(2000, 1, 2)

_UPDATABLE_FIELDS = {'start_time', 'end_time', 'is_recurring', 'day_of_week', 'valid_from', 'valid_to'}


def _to_minutes(value) -> int:
    if isinstance(value, str):
        return parse_time_of_day(value)
    if isinstance(value, datetime):
        return minutes_of_day(to_local_naive(value))
    if isinstance(value, time):
        return minutes_of_day(value)
    raise ValidationError('Start and end time are required.')


def _normalize_recurring(start_time, end_time, day_of_week, valid_from, valid_to) -> dict:
    if day_of_week is None:
        raise ValidationError('Day of week is required for recurring availability.')
    if not 0 <= day_of_week <= 6:
        raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).')

    start_minutes = _to_minutes(start_time)
    end_minutes = _to_minutes(end_time)
    validate_range(start_minutes, end_minutes)
    if end_minutes - start_minutes < config.MIN_AVAILABILITY_MINUTES:
        raise ValidationError(
            f'Availability must be at least {config.MIN_AVAILABILITY_MINUTES} minutes long.'
        )

    if valid_from and valid_to and valid_to < valid_from:
        raise ValidationError('valid_to must not be before valid_from.')

    return {
        'start_time': at_minutes(RECURRING_ANCHOR_DATE, start_minutes),
        'end_time': at_minutes(RECURRING_ANCHOR_DATE, end_minutes),
        'is_recurring': True,
        'day_of_week': day_of_week,
        'valid_from': valid_from,
        'valid_to': valid_to,
    }


def _normalize_one_time(start_time, end_time, day_of_week, valid_from, valid_to) -> dict:
    if day_of_week is not None:
        raise ValidationError('Day of week only applies to recurring availability.')
    if valid_from is not None or valid_to is not None:
        raise ValidationError('Validity dates only apply to recurring availability.')
    if not isinstance(start_time, datetime) or not isinstance(end_time, datetime):
        raise ValidationError('One-time availability needs a concrete start and end datetime.')

    start_time = to_local_naive(start_time)
    end_time = to_local_naive(end_time)
    validate_range(start_time, end_time)

    same_day = end_time.date() == start_time.date() or (
        end_time == datetime.combine(start_time.date() + timedelta(days=1), time.min)
    )
    if not same_day:
        raise ValidationError('One-time availability must start and end on the same day.')
    if end_time - start_time < timedelta(minutes=config.MIN_AVAILABILITY_MINUTES):
        raise ValidationError(
            f'Availability must be at least {config.MIN_AVAILABILITY_MINUTES} minutes long.'
        )

    return {
        'start_time': start_time,
        'end_time': end_time,
        'is_recurring': False,
        'day_of_week': None,
        'valid_from': None,
        'valid_to': None,
    }


def _normalize(start_time, end_time, is_recurring, day_of_week, valid_from, valid_to) -> dict:
    if is_recurring:
        return _normalize_recurring(start_time, end_time, day_of_week, valid_from, valid_to)
    return _normalize_one_time(start_time, end_time, day_of_week, valid_from, valid_to)


def _ensure_no_overlap(db: Session, doctor_id: int, fields: dict, exclude_id: int | None = None) -> None:
    query = db.query(Availability).filter(
        Availability.doctor_id == doctor_id,
        Availability.is_recurring.is_(fields['is_recurring']),
    )
    if exclude_id is not None:
        query = query.filter(Availability.id != exclude_id)

    if fields['is_recurring']:
        start_minutes = minutes_of_day(fields['start_time'])
        end_minutes = minutes_of_day(fields['end_time'])
        for existing in query.filter(Availability.day_of_week == fields['day_of_week']).all():
            existing_start = minutes_of_day(existing.start_time)
            if overlaps(start_minutes, end_minutes, existing_start, minutes_of_day(existing.end_time)):
                raise ValidationError('This time range overlaps an existing weekly availability for that day.')
        return

    overlapping = query.filter(
        Availability.start_time < fields['end_time'],
        Availability.end_time > fields['start_time'],
    ).first()
    if overlapping is not None:
        raise ValidationError('This time range overlaps an existing one-time availability.')


def get_availability(db: Session, availability_id: int) -> Availability:
    availability = db.query(Availability).filter(Availability.id == availability_id).first()
    if availability is None:
        raise NotFoundError('Availability')
    return availability


def create_availability(
    db: Session,
    doctor_id: int,
    start_time,
    end_time,
    is_recurring: bool = False,
    day_of_week: int | None = None,
    valid_from: date | None = None,
    valid_to: date | None = None,
    commit: bool = True,
) -> Availability:
    """Add a window for ``doctor_id``.

    Recurring windows accept ``"HH:MM"`` strings, ``time`` or ``datetime`` values
    for ``start_time``/``end_time``; only their time of day is kept.
    """
    fields = _normalize(start_time, end_time, is_recurring, day_of_week, valid_from, valid_to)
    get_doctor(db, doctor_id)
    _ensure_no_overlap(db, doctor_id, fields)

    availability = Availability(doctor_id=doctor_id, **fields)
    db.add(availability)
    if not commit:
        db.flush()
        return availability

    db.commit()
    db.refresh(availability)

    logger.info('Availability %s created for doctor %s', availability.id, doctor_id)
    return availability


def update_availability(db: Session, availability_id: int, patch: dict) -> Availability:
    unknown = set(patch) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f'Unknown availability fields: {", ".join(sorted(unknown))}.')

    availability = get_availability(db, availability_id)

    merged = {field: getattr(availability, field) for field in _UPDATABLE_FIELDS}
    merged.update(patch)
    if not merged['is_recurring']:
        # Switching a weekly window to a one-time one drops the weekly-only fields.
        for field in ('day_of_week', 'valid_from', 'valid_to'):
            if field not in patch:
                merged[field] = None

    fields = _normalize(
        merged['start_time'],
        merged['end_time'],
        merged['is_recurring'],
        merged['day_of_week'],
        merged['valid_from'],
        merged['valid_to'],
    )
    _ensure_no_overlap(db, availability.doctor_id, fields, exclude_id=availability.id)

    for field, value in fields.items():
        setattr(availability, field, value)
    db.commit()
    db.refresh(availability)

    logger.info('Availability %s updated', availability_id)
    return availability


def delete_availability(db: Session, availability_id: int) -> None:
    availability = get_availability(db, availability_id)
    doctor_id = availability.doctor_id

    db.delete(availability)
    db.commit()

    logger.info('Availability %s deleted for doctor %s', availability_id, doctor_id)


def list_availability(
    db: Session,
    doctor_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Availability]:
    """Recurring windows are always returned; one-time windows are limited to the date range."""
    recurring = db.query(Availability).filter(
        Availability.doctor_id == doctor_id,
        Availability.is_recurring.is_(True),
    ).order_by(Availability.day_of_week.asc(), Availability.start_time.asc()).all()

    one_time_query = db.query(Availability).filter(
        Availability.doctor_id == doctor_id,
        Availability.is_recurring.is_(False),
    )
    if start_date is not None:
        one_time_query = one_time_query.filter(
            Availability.end_time > datetime.combine(start_date, time.min)
        )
    if end_date is not None:
        one_time_query = one_time_query.filter(
            Availability.start_time < datetime.combine(end_date + timedelta(days=1), time.min)
        )
    one_time = one_time_query.order_by(Availability.start_time.asc()).all()

    return recurring + one_time


def replace_weekly_availability(db: Session, doctor_id: int, entries: list[dict]) -> list[Availability]:
    """Swap a doctor's whole weekly pattern for ``entries`` in one transaction.

    Each entry holds ``day_of_week``, ``start_time`` and ``end_time`` and may hold
    ``valid_from``/``valid_to``. One-time windows are left alone.
    """
    get_doctor(db, doctor_id)

    try:
        db.query(Availability).filter(
            Availability.doctor_id == doctor_id,
            Availability.is_recurring.is_(True),
        ).delete(synchronize_session=False)
        db.flush()

        created = [
            create_availability(
                db,
                doctor_id,
                entry['start_time'],
                entry['end_time'],
                is_recurring=True,
                day_of_week=entry.get('day_of_week'),
                valid_from=entry.get('valid_from'),
                valid_to=entry.get('valid_to'),
                commit=False,
            )
            for entry in entries
        ]
        db.commit()
    except SchedulingError:
        db.rollback()
        raise

    for availability in created:
        db.refresh(availability)

    logger.info('Weekly availability replaced for doctor %s (%d windows)', doctor_id, len(created))
    return created


def window_on(availability: Availability, day: date) -> tuple[datetime, datetime] | None:
    """Concrete ``(start, end)`` of ``availability`` on ``day``, or None if it does not apply."""
    if availability.is_recurring:
        if availability.day_of_week != weekday_index(day):
            return None
        if availability.valid_from is not None and day < availability.valid_from:
            return None
        if availability.valid_to is not None and day > availability.valid_to:
            return None
        return (
            at_minutes(day, minutes_of_day(availability.start_time)),
            at_minutes(day, minutes_of_day(availability.end_time)),
        )

    if availability.start_time.date() != day:
        return None
    return availability.start_time, availability.end_time


def find_covering_availability(db: Session, doctor_id: int, start_time: datetime, end_time: datetime) -> Availability | None:
    """First window effective on the start date that fully contains ``[start_time, end_time)``."""
    day = start_time.date()
    for availability in list_availability(db, doctor_id, day, day):
        window = window_on(availability, day)
        if window is not None and window[0] <= start_time and end_time <= window[1]:
            return availability
    return None
