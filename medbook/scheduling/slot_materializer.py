"""Expand availability windows into concrete bookable slots.

Slots are never stored. They are recomputed on every query from the doctor's
availability, slot template and current appointments, so two calls with the
same inputs at the same instant return the same ordered list. Whatever a client
picks from this list is re-checked by the booking guard before it is booked.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel
from sqlalchemy.orm import Session

from medbook.models.appointment import Appointment, AppointmentStatus
from medbook.scheduling.availability_store import list_availability, window_on
from medbook.scheduling.doctors import SlotSettings, get_doctor, get_slot_settings, validate_slot_settings
from medbook.scheduling.time_ranges import iterate_dates, overlaps, validate_range

logger = logging.getLogger(__name__)


class SlotStatus(str, Enum):
    AVAILABLE = 'available'
    BOOKED = 'booked'


class Slot(BaseModel):
    doctor_id: int
    availability_id: int | None = None
    start_time: datetime
    end_time: datetime
    status: SlotStatus = SlotStatus.AVAILABLE


def tile_window(
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    buffer_minutes: int,
) -> list[tuple[datetime, datetime]]:
    duration = timedelta(minutes=duration_minutes)
    step = duration + timedelta(minutes=buffer_minutes)

    tiles = []
    current = window_start
    while current + duration <= window_end:
        tiles.append((current, current + duration))
        current += step

    return tiles


def get_busy_ranges(
    db: Session,
    doctor_id: int,
    range_start: datetime,
    range_end: datetime,
) -> list[tuple[datetime, datetime]]:
    """Time taken by the doctor's non-cancelled appointments inside the range."""
    rows = db.query(Appointment.start_time, Appointment.end_time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status != AppointmentStatus.CANCELLED.value,
        Appointment.start_time < range_end,
        Appointment.end_time > range_start,
    ).order_by(Appointment.start_time.asc()).all()

    return [(start, end) for start, end in rows]


def materialize_slots(
    db: Session,
    doctor_id: int,
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int | None = None,
    buffer_minutes: int | None = None,
    advance_booking_days: int | None = None,
    now: datetime | None = None,
    include_booked: bool = False,
) -> list[Slot]:
    """Bookable slots for ``doctor_id`` inside ``[window_start, window_end)``.

    Sizing parameters default to the doctor's slot template. Slots past the
    advance-booking horizon or starting before ``now`` are never produced.
    With ``include_booked`` the slots taken by appointments come back marked
    ``BOOKED`` instead of being dropped.
    """
    validate_range(window_start, window_end)
    get_doctor(db, doctor_id)

    template = get_slot_settings(db, doctor_id)
    settings = SlotSettings(
        duration_minutes=template.duration_minutes if duration_minutes is None else duration_minutes,
        buffer_minutes=template.buffer_minutes if buffer_minutes is None else buffer_minutes,
        advance_booking_days=(
            template.advance_booking_days if advance_booking_days is None else advance_booking_days
        ),
    )
    validate_slot_settings(settings)

    now = now or datetime.now()
    horizon = now + timedelta(days=settings.advance_booking_days)
    effective_end = min(window_end, horizon)
    if effective_end <= window_start:
        return []

    availabilities = list_availability(db, doctor_id, window_start.date(), effective_end.date())
    busy_ranges = get_busy_ranges(db, doctor_id, window_start, effective_end)

    slots: dict[tuple[datetime, datetime], Slot] = {}
    for day in iterate_dates(window_start.date(), effective_end.date()):
        windows = []
        for availability in availabilities:
            window = window_on(availability, day)
            if window is not None:
                windows.append((window[0], window[1], availability.id))

        for range_start, range_end, availability_id in sorted(windows):
            for slot_start, slot_end in tile_window(
                range_start,
                range_end,
                settings.duration_minutes,
                settings.buffer_minutes,
            ):
                key = (slot_start, slot_end)
                if key in slots:
                    continue
                if slot_start < window_start or slot_end > effective_end or slot_start < now:
                    continue

                is_booked = any(
                    overlaps(slot_start, slot_end, busy_start, busy_end)
                    for busy_start, busy_end in busy_ranges
                )
                if is_booked and not include_booked:
                    continue

                slots[key] = Slot(
                    doctor_id=doctor_id,
                    availability_id=availability_id,
                    start_time=slot_start,
                    end_time=slot_end,
                    status=SlotStatus.BOOKED if is_booked else SlotStatus.AVAILABLE,
                )

    ordered = [slots[key] for key in sorted(slots)]
    logger.debug(
        'Materialized %d slots for doctor %s between %s and %s',
        len(ordered),
        doctor_id,
        window_start,
        effective_end,
    )
    return ordered
