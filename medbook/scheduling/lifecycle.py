"""Appointment status transitions and the cancellation refund policy.

::

    pending ──► confirmed ──► completed
       │            │
       └──────┬─────┘
              ▼
          cancelled

``cancelled`` and ``completed`` are terminal. Patients may only cancel, and
only before the appointment starts; doctors and admins may confirm, complete
and cancel.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.orm import Session

from medbook.core import config
from medbook.models.appointment import TERMINAL_STATUSES, Appointment, AppointmentStatus
from medbook.models.user import Role
from medbook.payments.refunds import RefundGateway, get_refund_gateway
from medbook.scheduling.actors import Actor, ensure_can_access
from medbook.scheduling.appointments import get_appointment
from medbook.scheduling.errors import AuthorizationError, InvalidStateError, SchedulingError

logger = logging.getLogger(__name__)

STAFF_ROLES = (Role.DOCTOR, Role.ADMIN)


class RefundType(str, Enum):
    FULL = 'full'
    NONE = 'none'


class RefundStatus(str, Enum):
    NOT_REQUIRED = 'not_required'
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass(frozen=True)
class RefundDecision:
    type: RefundType
    reason: str

    @property
    def eligible(self) -> bool:
        return self.type == RefundType.FULL


@dataclass
class CancellationResult:
    appointment: Appointment
    refund_decision: RefundDecision
    refund_status: RefundStatus
    refund_error: str | None = None


def compute_refund_decision(role: Role, cancelled_at: datetime, start_time: datetime) -> RefundDecision:
    if role in STAFF_ROLES:
        return RefundDecision(RefundType.FULL, 'Doctor or clinic cancellation: full refund per policy.')

    threshold = timedelta(hours=config.PATIENT_FULL_REFUND_HOURS)
    if role == Role.PATIENT and start_time - cancelled_at >= threshold:
        return RefundDecision(
            RefundType.FULL,
            f'Cancelled at least {config.PATIENT_FULL_REFUND_HOURS} hours before the appointment: full refund.',
        )

    return RefundDecision(
        RefundType.NONE,
        f'Cancelled less than {config.PATIENT_FULL_REFUND_HOURS} hours before the appointment: no refund per policy.',
    )


def assert_valid_transition(
    current_status: str,
    next_status: AppointmentStatus,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
    role: Role,
) -> None:
    if current_status in TERMINAL_STATUSES:
        raise InvalidStateError(f'Cannot update a {current_status} appointment.')

    if current_status == next_status.value:
        raise InvalidStateError(f'Appointment is already {current_status}.')

    if next_status == AppointmentStatus.CANCELLED:
        if role == Role.PATIENT and now >= start_time:
            raise InvalidStateError('Cannot cancel an appointment that has already started.')
        return

    if role not in STAFF_ROLES:
        raise AuthorizationError('Only doctors and admins can change appointment status.')

    if next_status == AppointmentStatus.CONFIRMED:
        if now >= end_time:
            raise InvalidStateError('Cannot confirm a past appointment.')
        return

    if next_status == AppointmentStatus.COMPLETED:
        if now < start_time:
            raise InvalidStateError("Cannot complete an appointment that hasn't started.")
        return

    raise InvalidStateError(f'Invalid status transition from {current_status} to {next_status.value}.')


def update_status(
    db: Session,
    appointment_id: int,
    next_status: AppointmentStatus,
    actor: Actor,
    now: datetime | None = None,
) -> Appointment:
    """Confirm or complete an appointment. Cancellation goes through ``cancel_appointment``."""
    if next_status == AppointmentStatus.CANCELLED:
        raise InvalidStateError('Use cancellation to cancel an appointment.')

    now = now or datetime.now()
    try:
        appointment = get_appointment(db, appointment_id, for_update=True)
        ensure_can_access(actor, appointment)
        assert_valid_transition(
            appointment.status,
            next_status,
            appointment.start_time,
            appointment.end_time,
            now,
            actor.role,
        )
        previous_status = appointment.status
        appointment.status = next_status.value
        db.commit()
    except SchedulingError:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info(
        'Appointment %s moved from %s to %s by %s %s',
        appointment_id,
        previous_status,
        next_status.value,
        actor.role.value,
        actor.user_id,
    )
    return appointment


def confirm_appointment(db: Session, appointment_id: int, actor: Actor, now: datetime | None = None) -> Appointment:
    return update_status(db, appointment_id, AppointmentStatus.CONFIRMED, actor, now=now)


def complete_appointment(db: Session, appointment_id: int, actor: Actor, now: datetime | None = None) -> Appointment:
    return update_status(db, appointment_id, AppointmentStatus.COMPLETED, actor, now=now)


def _append_cancellation_reason(notes: str | None, reason: str | None) -> str | None:
    if not reason:
        return notes
    if notes:
        return f'{notes}\n\nCancellation reason: {reason}'
    return f'Cancellation reason: {reason}'


def cancel_appointment(
    db: Session,
    appointment_id: int,
    actor: Actor,
    reason: str | None = None,
    refund_gateway: RefundGateway | None = None,
    now: datetime | None = None,
) -> CancellationResult:
    """Cancel the appointment, then try to refund it if the policy says so.

    The cancellation is committed before the refund is attempted. A refund
    that fails is logged and reported on the result; the appointment stays
    cancelled either way.
    """
    now = now or datetime.now()
    reason = reason.strip() if reason and reason.strip() else None

    try:
        appointment = get_appointment(db, appointment_id, for_update=True)
        ensure_can_access(actor, appointment)
        assert_valid_transition(
            appointment.status,
            AppointmentStatus.CANCELLED,
            appointment.start_time,
            appointment.end_time,
            now,
            actor.role,
        )

        decision = compute_refund_decision(actor.role, now, appointment.start_time)
        needs_refund = decision.eligible and bool(appointment.payment_intent_id)

        appointment.status = AppointmentStatus.CANCELLED.value
        appointment.cancelled_at = now
        appointment.cancelled_by = actor.role.value
        appointment.cancel_reason = reason
        appointment.notes = _append_cancellation_reason(appointment.notes, reason)
        appointment.refund_type = decision.type.value
        appointment.refund_status = (
            RefundStatus.PENDING.value if needs_refund else RefundStatus.NOT_REQUIRED.value
        )
        db.commit()
    except SchedulingError:
        db.rollback()
        raise

    logger.info(
        'Appointment %s cancelled by %s %s (refund: %s)',
        appointment_id,
        actor.role.value,
        actor.user_id,
        decision.type.value,
    )

    if not needs_refund:
        db.refresh(appointment)
        return CancellationResult(appointment, decision, RefundStatus.NOT_REQUIRED)

    gateway = refund_gateway or get_refund_gateway()
    refund_error = None
    try:
        refund_id = gateway.refund(appointment.payment_intent_id)
    except Exception as exc:
        logger.exception('Refund failed for cancelled appointment %s', appointment_id)
        appointment.refund_status = RefundStatus.FAILED.value
        refund_error = str(exc) or exc.__class__.__name__
    else:
        # The provider's refund id reaches the log before it reaches the database.
        logger.info(
            'Refund %s issued for payment %s of appointment %s',
            refund_id,
            appointment.payment_intent_id,
            appointment_id,
        )
        appointment.refund_id = refund_id
        appointment.refund_status = RefundStatus.SUCCEEDED.value
    db.commit()
    db.refresh(appointment)

    return CancellationResult(appointment, decision, RefundStatus(appointment.refund_status), refund_error)
