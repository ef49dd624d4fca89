import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

# Slot template defaults, used when a doctor has not saved their own template.
DEFAULT_SLOT_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES"), 30)
DEFAULT_BUFFER_MINUTES = _get_int(os.getenv("DEFAULT_BUFFER_MINUTES"), 0)
DEFAULT_ADVANCE_BOOKING_DAYS = _get_int(os.getenv("DEFAULT_ADVANCE_BOOKING_DAYS"), 30)

MIN_SLOT_DURATION_MINUTES = 5
MAX_SLOT_DURATION_MINUTES = 480
MIN_AVAILABILITY_MINUTES = _get_int(os.getenv("MIN_AVAILABILITY_MINUTES"), 15)
MAX_APPOINTMENT_NOTES_LENGTH = 600

PATIENT_FULL_REFUND_HOURS = _get_int(os.getenv("PATIENT_FULL_REFUND_HOURS"), 24)

PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DEFAULT_SLOT_DURATION_MINUTES < MIN_SLOT_DURATION_MINUTES:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES is below the minimum slot duration.")
    if DEFAULT_ADVANCE_BOOKING_DAYS < 1:
        raise RuntimeError("DEFAULT_ADVANCE_BOOKING_DAYS must be at least 1.")
