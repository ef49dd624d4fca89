from typing import NoReturn

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from medbook.database import SessionLocal, ensure_availability_schema, ensure_appointment_schema
from medbook.scheduling.errors import SchedulingError

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def raise_http_error(exc: Exception) -> NoReturn:
    if isinstance(exc, SchedulingError):
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    ) from exc
