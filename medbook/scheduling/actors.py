"""Who is acting on an appointment, as resolved by the auth layer."""

from dataclasses import dataclass

from medbook.models.appointment import Appointment
from medbook.models.user import Role
from medbook.scheduling.errors import AuthorizationError


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: Role
    doctor_id: int | None = None


def ensure_can_access(actor: Actor, appointment: Appointment) -> None:
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.DOCTOR:
        if actor.doctor_id is None or appointment.doctor_id != actor.doctor_id:
            raise AuthorizationError('Doctors can only manage their own appointments.')
        return
    if actor.role == Role.PATIENT:
        if appointment.patient_id != actor.user_id:
            raise AuthorizationError('Patients can only manage their own appointments.')
        return
    raise AuthorizationError('Unknown role.')


def ensure_can_manage_doctor(actor: Actor, doctor_id: int) -> None:
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.DOCTOR and actor.doctor_id == doctor_id:
        return
    raise AuthorizationError("Only the doctor or an admin can manage this doctor's schedule.")
