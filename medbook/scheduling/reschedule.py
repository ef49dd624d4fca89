"""Move an existing appointment to a new time, and optionally a new doctor."""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medbook.models.appointment import TERMINAL_STATUSES, Appointment
from medbook.models.user import Role
from medbook.scheduling.actors import Actor, ensure_can_access
from medbook.scheduling.appointments import get_appointment, validate_booking_window
from medbook.scheduling.booking_guard import SLOT_UNAVAILABLE_MESSAGE, reserve
from medbook.scheduling.errors import AuthorizationError, ConflictError, InvalidStateError, SchedulingError
from medbook.scheduling.time_ranges import to_local_naive

logger = logging.getLogger(__name__)


def reschedule(
    db: Session,
    appointment_id: int,
    new_start_time: datetime,
    new_end_time: datetime,
    new_doctor_id: int | None = None,
    actor: Actor | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Point the appointment at ``[new_start_time, new_end_time)``.

    The appointment keeps its id and status. Its own current time is excluded
    from the conflict check. If the booking guard rejects the new time, the
    transaction is rolled back and the appointment is left exactly as it was.
    """
    now = now or datetime.now()
    new_start_time = to_local_naive(new_start_time)
    new_end_time = to_local_naive(new_end_time)

    try:
        appointment = get_appointment(db, appointment_id, for_update=True)
        if actor is not None:
            ensure_can_access(actor, appointment)

        if appointment.status in TERMINAL_STATUSES:
            raise InvalidStateError(f'Cannot reschedule a {appointment.status} appointment.')
        if now >= appointment.start_time:
            raise InvalidStateError('Cannot reschedule an appointment that has already started.')

        doctor_id = new_doctor_id if new_doctor_id is not None else appointment.doctor_id
        if actor is not None and actor.role == Role.DOCTOR and doctor_id != appointment.doctor_id:
            raise AuthorizationError('Doctors cannot move appointments to another doctor.')
        validate_booking_window(db, doctor_id, new_start_time, new_end_time, now)

        availability = reserve(
            db,
            doctor_id,
            new_start_time,
            new_end_time,
            excluding_appointment_id=appointment.id,
        )

        previous_start = appointment.start_time
        appointment.doctor_id = doctor_id
        appointment.availability_id = availability.id
        appointment.start_time = new_start_time
        appointment.end_time = new_end_time
        db.flush()
        db.commit()
    except SchedulingError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(SLOT_UNAVAILABLE_MESSAGE) from exc

    db.refresh(appointment)
    logger.info(
        'Appointment %s rescheduled from %s to %s with doctor %s',
        appointment_id,
        previous_start,
        new_start_time,
        doctor_id,
    )
    return appointment
