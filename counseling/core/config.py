import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Slot generation walks every window in fixed steps of this many minutes,
# regardless of how long the eventual booking is.
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "15"))
MIN_APPOINTMENT_MINUTES = int(os.getenv("MIN_APPOINTMENT_MINUTES", "15"))
MAX_APPOINTMENT_MINUTES = int(os.getenv("MAX_APPOINTMENT_MINUTES", "180"))
DEFAULT_APPOINTMENT_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_MINUTES", "60"))
# Unset means bookings may be made any distance ahead.
BOOKING_HORIZON_DAYS = _get_optional_int(os.getenv("BOOKING_HORIZON_DAYS"))
DEFAULT_MAX_SESSIONS_PER_DAY = int(os.getenv("DEFAULT_MAX_SESSIONS_PER_DAY", "8"))

MAX_NOTES_LENGTH = 1000
MAX_STUDENT_NOTES_LENGTH = 500
MAX_COUNSELOR_NOTES_LENGTH = 1000
MAX_FEEDBACK_LENGTH = 1000
MAX_LOCATION_LENGTH = 200
MAX_MEETING_LINK_LENGTH = 500

NOTIFICATIONS_ENABLED = _get_bool(os.getenv("NOTIFICATIONS_ENABLED"), default=True)

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SLOT_GRANULARITY_MINUTES <= 0 or 60 % SLOT_GRANULARITY_MINUTES != 0:
        raise RuntimeError("SLOT_GRANULARITY_MINUTES must be a positive divisor of 60.")
