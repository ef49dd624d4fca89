from dataclasses import asdict
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_current_actor
from medbook.routes.common import ensure_database_ready, get_db, raise_http_error
from medbook.scheduling.actors import Actor, ensure_can_manage_doctor
from medbook.scheduling.doctors import get_doctor, get_slot_settings, upsert_slot_template
from medbook.scheduling.errors import SchedulingError
from medbook.scheduling.slot_materializer import Slot, materialize_slots

router = APIRouter(tags=['slots'])

DEFAULT_SLOT_RANGE_DAYS = 7
MAX_SLOT_RANGE_DAYS = 62


class SlotTemplateRequest(BaseModel):
    duration_minutes: int | None = None
    buffer_minutes: int | None = None
    advance_booking_days: int | None = None


class SlotTemplateResponse(BaseModel):
    doctor_id: int
    duration_minutes: int
    buffer_minutes: int
    advance_booking_days: int


def resolve_slot_window(start_date: date | None, end_date: date | None) -> tuple[datetime, datetime]:
    first_day = start_date or date.today()
    last_day = end_date or first_day + timedelta(days=DEFAULT_SLOT_RANGE_DAYS - 1)

    if last_day < first_day:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='end_date must not be before start_date.',
        )

    if (last_day - first_day).days >= MAX_SLOT_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Slot queries are limited to {MAX_SLOT_RANGE_DAYS} days.',
        )

    return datetime.combine(first_day, time.min), datetime.combine(last_day + timedelta(days=1), time.min)


@router.get('/doctors/{doctor_id}', response_model=list[Slot])
def list_doctor_slots(
    doctor_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    include_booked: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    window_start, window_end = resolve_slot_window(start_date, end_date)

    ensure_database_ready()

    try:
        return materialize_slots(
            db,
            doctor_id,
            window_start,
            window_end,
            include_booked=include_booked,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.get('/doctors/{doctor_id}/template', response_model=SlotTemplateResponse)
def get_slot_template(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_doctor(db, doctor_id)
        settings = get_slot_settings(db, doctor_id)
        return SlotTemplateResponse(doctor_id=doctor_id, **asdict(settings))
    except (SchedulingError, SQLAlchemyError) as exc:
        raise_http_error(exc)


@router.put('/doctors/{doctor_id}/template', response_model=SlotTemplateResponse)
def save_slot_template(
    doctor_id: int,
    data: SlotTemplateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        ensure_can_manage_doctor(actor, doctor_id)
        settings = upsert_slot_template(
            db,
            doctor_id,
            duration_minutes=data.duration_minutes,
            buffer_minutes=data.buffer_minutes,
            advance_booking_days=data.advance_booking_days,
        )
        return SlotTemplateResponse(doctor_id=doctor_id, **asdict(settings))
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)
