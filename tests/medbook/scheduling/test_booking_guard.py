import threading
from datetime import date, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import MONDAY, MONDAY_DOW, NOW, at
from medbook.database import Base
from medbook.models.appointment import Appointment, AppointmentStatus
from medbook.models.doctor import Doctor
from medbook.models.user import Role, User
from medbook.scheduling.appointments import (
    book_appointment,
    list_doctor_appointments,
    list_patient_appointments,
    normalize_notes,
)
from medbook.scheduling.availability_store import create_availability, delete_availability
from medbook.scheduling.booking_guard import (
    SLOT_UNAVAILABLE_MESSAGE,
    find_conflicting_appointment,
    reserve,
)
from medbook.scheduling.errors import ConflictError, NotFoundError, ValidationError
from medbook.scheduling.slot_materializer import materialize_slots


def test_reserve_returns_covering_window(db, doctor, monday_hours) -> None:
    availability = reserve(db, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))

    assert availability.id == monday_hours.id


def test_reserve_bumps_doctor_booking_version(db, doctor, monday_hours) -> None:
    reserve(db, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))
    db.commit()

    db.expire_all()
    assert db.query(Doctor).filter(Doctor.id == doctor.id).one().booking_version == 1


def test_reserve_rejects_time_outside_availability(db, doctor, monday_hours) -> None:
    with pytest.raises(ConflictError) as exception_info:
        reserve(db, doctor.id, at(MONDAY, 11, 45), at(MONDAY, 12, 15))

    assert exception_info.value.message == SLOT_UNAVAILABLE_MESSAGE
    assert exception_info.value.status_code == 409


def test_reserve_rejects_overlap_with_active_appointment(db, doctor, patient, monday_hours, make_appointment) -> None:
    make_appointment(patient.id, doctor.id, at(MONDAY, 9, 15), at(MONDAY, 9, 45), AppointmentStatus.CONFIRMED)

    with pytest.raises(ConflictError):
        reserve(db, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))


def test_reserve_allows_adjacent_appointment(db, doctor, patient, monday_hours, make_appointment) -> None:
    make_appointment(patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))

    assert reserve(db, doctor.id, at(MONDAY, 9, 30), at(MONDAY, 10)).id == monday_hours.id


def test_reserve_ignores_cancelled_and_completed(db, doctor, patient, monday_hours, make_appointment) -> None:
    make_appointment(patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30), AppointmentStatus.CANCELLED)
    make_appointment(patient.id, doctor.id, at(MONDAY, 9, 30), at(MONDAY, 10), AppointmentStatus.COMPLETED)

    assert reserve(db, doctor.id, at(MONDAY, 9), at(MONDAY, 10)).id == monday_hours.id


def test_reserve_can_exclude_the_appointment_being_moved(db, doctor, patient, monday_hours, make_appointment) -> None:
    existing = make_appointment(patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))

    assert find_conflicting_appointment(db, doctor.id, at(MONDAY, 9, 15), at(MONDAY, 9, 45)).id == existing.id
    assert reserve(db, doctor.id, at(MONDAY, 9, 15), at(MONDAY, 9, 45), excluding_appointment_id=existing.id)


def test_reserve_unknown_doctor(db) -> None:
    with pytest.raises(NotFoundError):
        reserve(db, 404, at(MONDAY, 9), at(MONDAY, 9, 30))


def test_reserve_rejects_after_availability_is_deleted(db, doctor, monday_hours) -> None:
    delete_availability(db, monday_hours.id)

    with pytest.raises(ConflictError):
        reserve(db, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))


def test_book_appointment_records_pending_appointment(db, doctor, patient, monday_hours) -> None:
    appointment = book_appointment(
        db,
        patient.id,
        doctor.id,
        at(MONDAY, 10),
        notes='  Follow-up on blood work  ',
        payment_intent_id='pi_123',
        now=NOW,
    )

    assert appointment.id is not None
    assert appointment.status == AppointmentStatus.PENDING.value
    assert appointment.end_time == at(MONDAY, 10, 30)
    assert appointment.availability_id == monday_hours.id
    assert appointment.notes == 'Follow-up on blood work'
    assert appointment.payment_intent_id == 'pi_123'


def test_book_appointment_rejects_past_and_far_future(db, doctor, patient, monday_hours) -> None:
    with pytest.raises(ValidationError) as exception_info:
        book_appointment(db, patient.id, doctor.id, at(MONDAY, 9), now=at(MONDAY, 9, 5))
    assert exception_info.value.message == 'Appointments must be scheduled in the future.'

    with pytest.raises(ValidationError):
        book_appointment(db, patient.id, doctor.id, at(MONDAY + timedelta(days=35), 9), now=NOW)


def test_book_appointment_rejects_unknown_patient(db, doctor, monday_hours) -> None:
    with pytest.raises(NotFoundError) as exception_info:
        book_appointment(db, 404, doctor.id, at(MONDAY, 9), now=NOW)

    assert exception_info.value.message == 'Patient not found.'


def test_book_appointment_rejects_overlong_notes(db, doctor, patient, monday_hours) -> None:
    with pytest.raises(ValidationError):
        book_appointment(db, patient.id, doctor.id, at(MONDAY, 9), notes='x' * 601, now=NOW)


def test_normalize_notes_blank_becomes_none() -> None:
    assert normalize_notes('   ') is None
    assert normalize_notes(None) is None


def test_booked_slot_disappears_and_second_booking_conflicts(db, doctor, patient, other_patient, monday_hours) -> None:
    slots = materialize_slots(db, doctor.id, at(MONDAY, 0), at(MONDAY, 23, 59), now=NOW)
    assert len(slots) == 6
    chosen = slots[0]
    assert (chosen.start_time, chosen.end_time) == (at(MONDAY, 9), at(MONDAY, 9, 30))

    book_appointment(db, patient.id, doctor.id, chosen.start_time, chosen.end_time, now=NOW)

    remaining = materialize_slots(db, doctor.id, at(MONDAY, 0), at(MONDAY, 23, 59), now=NOW)
    assert chosen.start_time not in [slot.start_time for slot in remaining]

    with pytest.raises(ConflictError) as exception_info:
        book_appointment(db, other_patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 15), now=NOW)

    assert exception_info.value.message == SLOT_UNAVAILABLE_MESSAGE
    assert db.query(Appointment).count() == 1


def test_stale_slot_is_rechecked_against_current_availability(db, doctor, patient, monday_hours) -> None:
    slots = materialize_slots(db, doctor.id, at(MONDAY, 0), at(MONDAY, 23, 59), now=NOW)
    delete_availability(db, monday_hours.id)

    with pytest.raises(ConflictError):
        book_appointment(db, patient.id, doctor.id, slots[0].start_time, slots[0].end_time, now=NOW)

    assert db.query(Appointment).count() == 0


def test_one_time_window_is_bookable(db, doctor, patient) -> None:
    extra = create_availability(db, doctor.id, at(MONDAY, 14), at(MONDAY, 16))

    appointment = book_appointment(db, patient.id, doctor.id, at(MONDAY, 15), now=NOW)

    assert appointment.availability_id == extra.id


def test_cancelled_slot_can_be_rebooked(db, doctor, patient, other_patient, monday_hours, make_appointment) -> None:
    make_appointment(patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30), AppointmentStatus.CANCELLED)

    appointment = book_appointment(db, other_patient.id, doctor.id, at(MONDAY, 9), now=NOW)

    assert appointment.patient_id == other_patient.id


def test_unique_index_catches_writer_that_skipped_the_guard(
    db,
    doctor,
    patient,
    other_patient,
    monday_hours,
    make_appointment,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    make_appointment(patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))
    monkeypatch.setattr('medbook.scheduling.appointments.reserve', lambda *args, **kwargs: monday_hours)

    with pytest.raises(ConflictError) as exception_info:
        book_appointment(db, other_patient.id, doctor.id, at(MONDAY, 9), now=NOW)

    assert exception_info.value.message == SLOT_UNAVAILABLE_MESSAGE
    assert db.query(Appointment).count() == 1


def test_list_appointments_for_patient_and_doctor(db, doctor, patient, other_patient, make_appointment) -> None:
    past = make_appointment(patient.id, doctor.id, at(MONDAY, 9) - timedelta(days=14), at(MONDAY, 9, 30) - timedelta(days=14))
    upcoming = make_appointment(patient.id, doctor.id, at(MONDAY, 9), at(MONDAY, 9, 30))
    other = make_appointment(other_patient.id, doctor.id, at(MONDAY, 10), at(MONDAY, 10, 30), AppointmentStatus.CONFIRMED)

    assert [item.id for item in list_patient_appointments(db, patient.id, now=NOW)] == [upcoming.id]
    assert [item.id for item in list_patient_appointments(db, patient.id, include_past=True, now=NOW)] == [
        past.id,
        upcoming.id,
    ]

    assert [item.id for item in list_doctor_appointments(db, doctor.id)] == [past.id, upcoming.id, other.id]
    assert [item.id for item in list_doctor_appointments(db, doctor.id, start_time=NOW)] == [upcoming.id, other.id]
    confirmed = list_doctor_appointments(db, doctor.id, status=AppointmentStatus.CONFIRMED)
    assert [item.id for item in confirmed] == [other.id]


def test_second_session_sees_the_first_sessions_booking(tmp_path) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "race.db"}')
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_factory() as setup:
        doctor_user = User(email='doctor@example.com', hashed_password='', role=Role.DOCTOR.value)
        first_user = User(email='first@example.com', hashed_password='', role=Role.PATIENT.value)
        second_user = User(email='second@example.com', hashed_password='', role=Role.PATIENT.value)
        setup.add_all([doctor_user, first_user, second_user])
        setup.flush()
        doctor = Doctor(user_id=doctor_user.id, booking_version=0)
        setup.add(doctor)
        setup.commit()
        doctor_id, first_id, second_id = doctor.id, first_user.id, second_user.id
        create_availability(setup, doctor_id, '09:00', '12:00', is_recurring=True, day_of_week=MONDAY_DOW)

    first = session_factory()
    second = session_factory()
    try:
        # Both clients fetched the same slot list before either booked.
        seen_by_second = materialize_slots(second, doctor_id, at(MONDAY, 0), at(MONDAY, 23, 59), now=NOW)
        second.rollback()

        book_appointment(first, first_id, doctor_id, at(MONDAY, 9), now=NOW)

        with pytest.raises(ConflictError):
            book_appointment(
                second,
                second_id,
                doctor_id,
                seen_by_second[0].start_time,
                seen_by_second[0].end_time,
                now=NOW,
            )

        active = second.query(Appointment).filter(Appointment.status != AppointmentStatus.CANCELLED.value).all()
        assert [appointment.patient_id for appointment in active] == [first_id]
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_book_appointment_accepts_utc_timestamps(db, doctor, patient, monday_hours) -> None:
    start_utc = at(MONDAY, 9).astimezone(timezone.utc)
    assert start_utc.tzinfo is timezone.utc

    appointment = book_appointment(db, patient.id, doctor.id, start_utc, now=NOW)

    assert appointment.start_time == at(MONDAY, 9)
    assert appointment.end_time == at(MONDAY, 9, 30)
    assert appointment.start_time.tzinfo is None


def test_one_time_availability_accepts_utc_timestamps(db, doctor) -> None:
    extra = create_availability(
        db,
        doctor.id,
        at(MONDAY, 14).astimezone(timezone.utc),
        at(MONDAY, 16).astimezone(timezone.utc),
    )

    assert extra.start_time == at(MONDAY, 14)
    assert extra.end_time == at(MONDAY, 16)


def test_booking_horizon_matches_listed_slots(db, doctor, patient) -> None:
    # NOW + 30 days is Saturday 2026-01-31 08:00.
    horizon_day = date(2026, 1, 31)
    create_availability(db, doctor.id, at(horizon_day, 7), at(horizon_day, 9))

    listed = materialize_slots(db, doctor.id, at(horizon_day, 0), at(horizon_day, 23, 59), now=NOW)
    assert [slot.start_time for slot in listed] == [at(horizon_day, 7), at(horizon_day, 7, 30)]

    with pytest.raises(ValidationError):
        book_appointment(db, patient.id, doctor.id, at(horizon_day, 7, 45), now=NOW)

    appointment = book_appointment(db, patient.id, doctor.id, at(horizon_day, 7, 30), now=NOW)
    assert appointment.end_time == at(horizon_day, 8)


def test_concurrent_bookings_for_one_slot_have_a_single_winner(tmp_path) -> None:
    workers = 8
    engine = create_engine(f'sqlite:///{tmp_path / "concurrent.db"}', connect_args={'timeout': 30})
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_factory() as setup:
        doctor_user = User(email='doctor@example.com', hashed_password='', role=Role.DOCTOR.value)
        patients = [
            User(email=f'patient{index}@example.com', hashed_password='', role=Role.PATIENT.value)
            for index in range(workers)
        ]
        setup.add_all([doctor_user, *patients])
        setup.flush()
        doctor = Doctor(user_id=doctor_user.id, booking_version=0)
        setup.add(doctor)
        setup.commit()
        doctor_id = doctor.id
        patient_ids = [patient.id for patient in patients]
        create_availability(setup, doctor_id, '09:00', '12:00', is_recurring=True, day_of_week=MONDAY_DOW)

    barrier = threading.Barrier(workers)
    outcomes: list[str] = []
    unexpected: list[Exception] = []
    outcomes_lock = threading.Lock()

    def attempt(patient_id: int) -> None:
        session = session_factory()
        try:
            barrier.wait()
            book_appointment(session, patient_id, doctor_id, at(MONDAY, 9), at(MONDAY, 9, 30), now=NOW)
            outcome = 'ok'
        except ConflictError:
            outcome = 'conflict'
        except Exception as exc:
            with outcomes_lock:
                unexpected.append(exc)
            return
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(patient_id,)) for patient_id in patient_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    try:
        assert unexpected == []
        assert sorted(outcomes) == ['conflict'] * (workers - 1) + ['ok']
        with session_factory() as check:
            rows = check.query(Appointment).filter(Appointment.doctor_id == doctor_id).all()
            assert len(rows) == 1
            assert rows[0].status == AppointmentStatus.PENDING.value
    finally:
        engine.dispose()
