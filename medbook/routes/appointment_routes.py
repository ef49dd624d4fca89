from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_current_actor
from medbook.models.appointment import Appointment, AppointmentStatus
from medbook.models.user import Role
from medbook.payments.refunds import RefundGateway, get_refund_gateway
from medbook.routes.common import ensure_database_ready, get_db, raise_http_error
from medbook.scheduling import appointments, lifecycle
from medbook.scheduling.actors import Actor, ensure_can_manage_doctor
from medbook.scheduling.errors import SchedulingError
from medbook.scheduling.reschedule import reschedule

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    start_time: datetime
    end_time: datetime | None = None
    notes: str | None = None
    payment_intent_id: str | None = None
    patient_id: int | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        try:
            return appointments.normalize_notes(value)
        except SchedulingError as exc:
            raise ValueError(exc.message) from exc


class UpdateStatusRequest(BaseModel):
    status: AppointmentStatus
    reason: str | None = None


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None


class RescheduleRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    doctor_id: int | None = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    availability_id: int | None = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    notes: str | None = None
    payment_intent_id: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    refund_type: str | None = None
    refund_status: str | None = None

    class Config:
        from_attributes = True


class CancellationResponse(BaseModel):
    appointment: AppointmentResponse
    refund_type: lifecycle.RefundType
    refund_eligible: bool
    refund_reason: str
    refund_status: lifecycle.RefundStatus
    refund_error: str | None = None


def to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse.model_validate(appointment)


def to_cancellation_response(result: lifecycle.CancellationResult) -> CancellationResponse:
    return CancellationResponse(
        appointment=to_response(result.appointment),
        refund_type=result.refund_decision.type,
        refund_eligible=result.refund_decision.eligible,
        refund_reason=result.refund_decision.reason,
        refund_status=result.refund_status,
        refund_error=result.refund_error,
    )


def resolve_patient_id(actor: Actor, requested_patient_id: int | None) -> int:
    if actor.role == Role.PATIENT:
        if requested_patient_id is not None and requested_patient_id != actor.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only book appointments for themselves.',
            )
        return actor.user_id

    if actor.role == Role.ADMIN:
        if requested_patient_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='patient_id is required when an admin books an appointment.',
            )
        return requested_patient_id

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only patients and admins can book appointments.',
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    patient_id = resolve_patient_id(actor, data.patient_id)

    ensure_database_ready()

    try:
        appointment = appointments.book_appointment(
            db,
            patient_id,
            data.doctor_id,
            data.start_time,
            end_time=data.end_time,
            notes=data.notes,
            payment_intent_id=data.payment_intent_id,
        )
        return to_response(appointment)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)


@router.get('/me', response_model=list[AppointmentResponse])
def list_my_appointments(
    include_past: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if actor.role == Role.DOCTOR:
            if actor.doctor_id is None:
                return []
            found = appointments.list_doctor_appointments(
                db,
                actor.doctor_id,
                start_time=None if include_past else datetime.now(),
            )
        else:
            found = appointments.list_patient_appointments(db, actor.user_id, include_past=include_past)
        return [to_response(appointment) for appointment in found]
    except SQLAlchemyError as exc:
        raise_http_error(exc)


@router.get('/doctors/{doctor_id}', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    doctor_id: int,
    start_time: datetime | None = Query(default=None),
    end_time: datetime | None = Query(default=None),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        ensure_can_manage_doctor(actor, doctor_id)
        found = appointments.list_doctor_appointments(
            db,
            doctor_id,
            start_time=start_time,
            end_time=end_time,
            status=appointment_status,
        )
        return [to_response(appointment) for appointment in found]
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.patch('/{appointment_id}/status')
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    refund_gateway: RefundGateway = Depends(get_refund_gateway),
):
    ensure_database_ready()

    try:
        if data.status == AppointmentStatus.CANCELLED:
            result = lifecycle.cancel_appointment(
                db,
                appointment_id,
                actor,
                reason=data.reason,
                refund_gateway=refund_gateway,
            )
            return to_cancellation_response(result)

        appointment = lifecycle.update_status(db, appointment_id, data.status, actor)
        return to_response(appointment)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)


@router.post('/{appointment_id}/cancel', response_model=CancellationResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    refund_gateway: RefundGateway = Depends(get_refund_gateway),
):
    ensure_database_ready()

    try:
        result = lifecycle.cancel_appointment(
            db,
            appointment_id,
            actor,
            reason=data.reason,
            refund_gateway=refund_gateway,
        )
        return to_cancellation_response(result)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = reschedule(
            db,
            appointment_id,
            data.start_time,
            data.end_time,
            new_doctor_id=data.doctor_id,
            actor=actor,
        )
        return to_response(appointment)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)
