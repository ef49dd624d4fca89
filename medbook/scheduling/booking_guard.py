"""The single check every booking and reschedule goes through before it is written.

Slot lists are served from a separate read path and can be stale by the time a
patient submits, so nothing the client claims about a slot is trusted here.
``reserve`` runs inside the caller's transaction:

1. lock the doctor's schedule row so concurrent reservations for the same
   doctor are serialized (row lock on Postgres, write lock on SQLite);
2. re-check that the range sits inside availability effective right now;
3. look for an overlapping pending or confirmed appointment.

The partial unique index on ``appointments(doctor_id, start_time)`` backs this
up: if two writers still race, the loser's flush fails with an IntegrityError
which callers turn into a ConflictError.
"""

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from medbook.models.appointment import ACTIVE_STATUSES, Appointment
from medbook.models.availability import Availability
from medbook.models.doctor import Doctor
from medbook.scheduling.availability_store import find_covering_availability
from medbook.scheduling.errors import ConflictError, NotFoundError
from medbook.scheduling.time_ranges import validate_range

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_MESSAGE = 'Slot no longer available.'


def lock_doctor_schedule(db: Session, doctor_id: int) -> None:
    result = db.execute(
        update(Doctor)
        .where(Doctor.id == doctor_id)
        .values(booking_version=Doctor.booking_version + 1)
    )
    if result.rowcount == 0:
        raise NotFoundError('Doctor')


def find_conflicting_appointment(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    excluding_appointment_id: int | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    )
    if excluding_appointment_id is not None:
        query = query.filter(Appointment.id != excluding_appointment_id)

    return query.order_by(Appointment.start_time.asc()).first()


def reserve(
    db: Session,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    excluding_appointment_id: int | None = None,
) -> Availability:
    """Check ``[start_time, end_time)`` is still bookable for ``doctor_id``.

    Returns the availability window covering the range. Does not commit; the
    caller writes the appointment in the same transaction.
    """
    validate_range(start_time, end_time)
    lock_doctor_schedule(db, doctor_id)

    availability = find_covering_availability(db, doctor_id, start_time, end_time)
    if availability is None:
        logger.warning(
            'Reservation rejected for doctor %s at %s: outside current availability',
            doctor_id,
            start_time,
        )
        raise ConflictError(SLOT_UNAVAILABLE_MESSAGE)

    conflict = find_conflicting_appointment(db, doctor_id, start_time, end_time, excluding_appointment_id)
    if conflict is not None:
        logger.warning(
            'Reservation rejected for doctor %s at %s: overlaps appointment %s',
            doctor_id,
            start_time,
            conflict.id,
        )
        raise ConflictError(SLOT_UNAVAILABLE_MESSAGE)

    return availability
