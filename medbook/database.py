import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from medbook.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")

engine = create_engine(DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability')}
        migration_steps = [
            ('valid_from', 'ALTER TABLE availability ADD COLUMN valid_from DATE'),
            ('valid_to', 'ALTER TABLE availability ADD COLUMN valid_to DATE'),
            ('updated_at', 'ALTER TABLE availability ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_doctor_day ON availability(doctor_id, day_of_week)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_doctor_start ON availability(doctor_id, start_time)')
            )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('payment_intent_id', 'ALTER TABLE appointments ADD COLUMN payment_intent_id VARCHAR'),
            ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
            ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by VARCHAR'),
            ('cancel_reason', 'ALTER TABLE appointments ADD COLUMN cancel_reason VARCHAR'),
            ('refund_type', 'ALTER TABLE appointments ADD COLUMN refund_type VARCHAR'),
            ('refund_status', 'ALTER TABLE appointments ADD COLUMN refund_status VARCHAR'),
            ('refund_id', 'ALTER TABLE appointments ADD COLUMN refund_id VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_range ON appointments(doctor_id, start_time, end_time)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_start_active '
                    "ON appointments(doctor_id, start_time) WHERE status != 'cancelled'"
                )
            )

        _appointment_schema_checked = True
