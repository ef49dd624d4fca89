import os
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medbook.database import Base  # noqa: E402
from medbook.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from medbook.models.availability import Availability  # noqa: E402,F401
from medbook.models.doctor import Doctor, SlotTemplate  # noqa: E402,F401
from medbook.models.user import Role, User  # noqa: E402
from medbook.scheduling.actors import Actor  # noqa: E402
from medbook.scheduling.availability_store import create_availability  # noqa: E402

# Thursday; the Monday after it is 2026-01-05.
NOW = datetime(2026, 1, 1, 8, 0)
MONDAY = date(2026, 1, 5)
MONDAY_DOW = 1


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    def _make_user(email: str, role: Role = Role.PATIENT) -> User:
        user = User(email=email, hashed_password='', role=role.value)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_doctor(db, make_user):
    def _make_doctor(email: str = 'doctor@example.com') -> Doctor:
        user = make_user(email, Role.DOCTOR)
        doctor = Doctor(user_id=user.id, specialization='General practice', booking_version=0)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make_doctor


@pytest.fixture
def doctor(make_doctor) -> Doctor:
    return make_doctor()


@pytest.fixture
def patient(make_user) -> User:
    return make_user('patient@example.com')


@pytest.fixture
def other_patient(make_user) -> User:
    return make_user('other.patient@example.com')


@pytest.fixture
def admin(make_user) -> User:
    return make_user('admin@example.com', Role.ADMIN)


@pytest.fixture
def monday_hours(db, doctor) -> Availability:
    """Weekly Monday 09:00-12:00 for ``doctor``."""
    return create_availability(db, doctor.id, '09:00', '12:00', is_recurring=True, day_of_week=MONDAY_DOW)


@pytest.fixture
def doctor_actor(doctor) -> Actor:
    return Actor(user_id=doctor.user_id, role=Role.DOCTOR, doctor_id=doctor.id)


@pytest.fixture
def patient_actor(patient) -> Actor:
    return Actor(user_id=patient.id, role=Role.PATIENT)


@pytest.fixture
def admin_actor(admin) -> Actor:
    return Actor(user_id=admin.id, role=Role.ADMIN)


@pytest.fixture
def make_appointment(db):
    def _make_appointment(
        patient_id: int,
        doctor_id: int,
        start_time: datetime,
        end_time: datetime,
        status: AppointmentStatus = AppointmentStatus.PENDING,
        payment_intent_id: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            start_time=start_time,
            end_time=end_time,
            status=status.value,
            payment_intent_id=payment_intent_id,
            notes=notes,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment
