from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import get_current_actor
from medbook.routes.common import ensure_database_ready, get_db, raise_http_error
from medbook.scheduling import availability_store
from medbook.scheduling.actors import Actor, ensure_can_manage_doctor
from medbook.scheduling.errors import SchedulingError
from medbook.scheduling.time_ranges import format_time_of_day, minutes_of_day, parse_time_of_day

router = APIRouter(tags=['availability'])


class CreateAvailabilityRequest(BaseModel):
    doctor_id: int
    start_time: datetime | time
    end_time: datetime | time
    is_recurring: bool = False
    day_of_week: int | None = None
    valid_from: date | None = None
    valid_to: date | None = None


class UpdateAvailabilityRequest(BaseModel):
    start_time: datetime | time | None = None
    end_time: datetime | time | None = None
    is_recurring: bool | None = None
    day_of_week: int | None = None
    valid_from: date | None = None
    valid_to: date | None = None


class WeeklyAvailabilityEntry(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str
    valid_from: date | None = None
    valid_to: date | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        try:
            return format_time_of_day(parse_time_of_day(value))
        except SchedulingError as exc:
            raise ValueError(exc.message) from exc


class ReplaceWeeklyAvailabilityRequest(BaseModel):
    entries: list[WeeklyAvailabilityEntry]


class AvailabilityResponse(BaseModel):
    id: int
    doctor_id: int
    is_recurring: bool
    day_of_week: int | None = None
    start_time: datetime
    end_time: datetime
    valid_from: date | None = None
    valid_to: date | None = None
    start_of_day: str
    end_of_day: str

    @classmethod
    def from_model(cls, availability) -> 'AvailabilityResponse':
        return cls(
            id=availability.id,
            doctor_id=availability.doctor_id,
            is_recurring=availability.is_recurring,
            day_of_week=availability.day_of_week,
            start_time=availability.start_time,
            end_time=availability.end_time,
            valid_from=availability.valid_from,
            valid_to=availability.valid_to,
            start_of_day=format_time_of_day(minutes_of_day(availability.start_time)),
            end_of_day=format_time_of_day(minutes_of_day(availability.end_time)),
        )


@router.post('', response_model=AvailabilityResponse, status_code=status.HTTP_201_CREATED)
def create_availability(
    data: CreateAvailabilityRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        ensure_can_manage_doctor(actor, data.doctor_id)
        availability = availability_store.create_availability(
            db,
            data.doctor_id,
            data.start_time,
            data.end_time,
            is_recurring=data.is_recurring,
            day_of_week=data.day_of_week,
            valid_from=data.valid_from,
            valid_to=data.valid_to,
        )
        return AvailabilityResponse.from_model(availability)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)


@router.patch('/{availability_id}', response_model=AvailabilityResponse)
def update_availability(
    availability_id: int,
    data: UpdateAvailabilityRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        existing = availability_store.get_availability(db, availability_id)
        ensure_can_manage_doctor(actor, existing.doctor_id)
        availability = availability_store.update_availability(
            db,
            availability_id,
            data.model_dump(exclude_unset=True),
        )
        return AvailabilityResponse.from_model(availability)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)


@router.delete('/{availability_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(
    availability_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        existing = availability_store.get_availability(db, availability_id)
        ensure_can_manage_doctor(actor, existing.doctor_id)
        availability_store.delete_availability(db, availability_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)


@router.get('/doctors/{doctor_id}', response_model=list[AvailabilityResponse])
def list_doctor_availability(
    doctor_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        availabilities = availability_store.list_availability(db, doctor_id, start_date, end_date)
        return [AvailabilityResponse.from_model(availability) for availability in availabilities]
    except SQLAlchemyError as exc:
        raise_http_error(exc)


@router.put('/doctors/{doctor_id}/weekly', response_model=list[AvailabilityResponse])
def replace_weekly_availability(
    doctor_id: int,
    data: ReplaceWeeklyAvailabilityRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        ensure_can_manage_doctor(actor, doctor_id)
        created = availability_store.replace_weekly_availability(
            db,
            doctor_id,
            [entry.model_dump() for entry in data.entries],
        )
        return [AvailabilityResponse.from_model(availability) for availability in created]
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise_http_error(exc)
