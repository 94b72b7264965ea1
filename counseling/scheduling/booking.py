"""Booking coordinator: validates a booking and commits it against the ledger."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from counseling.core import config, errors
from counseling.models.appointment import Appointment, AppointmentStatus, AppointmentType
from counseling.models.user import Role, User
from counseling.scheduling import availability_store, booking_ledger, slots, timeutils

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    student_id: int
    counselor_id: int
    date: date
    time: str | time
    duration_minutes: int = config.DEFAULT_APPOINTMENT_MINUTES
    appointment_type: str = AppointmentType.INDIVIDUAL.value
    notes: str | None = None
    student_notes: str | None = None


def normalize_text(value: str | None, max_length: int, field_name: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise errors.ValidationError(f'{field_name} must be {max_length} characters or fewer.')

    return normalized


def parse_appointment_type(value: str) -> AppointmentType:
    try:
        return AppointmentType((value or '').strip().lower())
    except ValueError as exc:
        raise errors.ValidationError('Invalid appointment type.') from exc


def validate_booking_date(booking_date: date, start: time, now: datetime) -> None:
    today = now.date()
    if booking_date < today:
        raise errors.ValidationError('Appointment date cannot be in the past.')

    if booking_date == today and start <= now.time():
        raise errors.ValidationError('Appointment must be scheduled for a future date and time.')

    horizon_days = config.BOOKING_HORIZON_DAYS
    if horizon_days is not None and booking_date > today + timedelta(days=horizon_days):
        raise errors.ValidationError(
            f'Appointments cannot be scheduled more than {horizon_days} days in advance.'
        )


def _require_student(db: Session, student_id: int) -> User:
    student = db.query(User).filter(User.id == student_id).first()
    if student is None or student.role != Role.STUDENT.value:
        raise errors.NotFound('Student not found.')
    return student


def book_appointment(db: Session, request: BookingRequest, now: datetime | None = None) -> Appointment:
    """Create a ``scheduled`` appointment for a currently free slot.

    The slot is recomputed from a fresh ledger snapshot, then re-checked at
    commit while the counselor-day guard row is locked, so of two requests
    racing for overlapping intervals only one commits. The loser gets
    ``SlotUnavailable`` and may re-query slots; nothing is retried here.
    """
    now = now or datetime.now()

    start = request.time if isinstance(request.time, time) else timeutils.parse_hhmm(request.time)
    start = start.replace(second=0, microsecond=0)
    slots.validate_duration(request.duration_minutes)
    appointment_type = parse_appointment_type(request.appointment_type)
    notes = normalize_text(request.notes, config.MAX_NOTES_LENGTH, 'Notes')
    student_notes = normalize_text(request.student_notes, config.MAX_STUDENT_NOTES_LENGTH, 'Student notes')
    validate_booking_date(request.date, start, now)

    _require_student(db, request.student_id)
    counselor = availability_store.get_bookable_counselor(db, request.counselor_id)
    max_sessions_per_day = counselor.max_sessions_per_day
    snapshot = booking_ledger.read_snapshot(db, request.counselor_id, request.date)
    windows = availability_store.windows_for_date(db, request.counselor_id, request.date)
    free_slots = slots.build_slot_sequence(windows, snapshot, request.duration_minutes)
    if start not in free_slots:
        raise errors.SlotUnavailable('The requested time is not available.')

    booked_that_day = sum(1 for appointment in snapshot.appointments if appointment.date == request.date)
    if booked_that_day >= max_sessions_per_day:
        raise errors.SlotUnavailable('Counselor has reached the maximum number of sessions for this day.')

    start_time = datetime.combine(request.date, start)
    appointment = Appointment(
        student_id=request.student_id,
        counselor_id=request.counselor_id,
        date=request.date,
        time=start,
        duration_minutes=request.duration_minutes,
        appointment_type=appointment_type.value,
        status=AppointmentStatus.SCHEDULED.value,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=request.duration_minutes),
        notes=notes,
        student_notes=student_notes,
        created_at=now,
        updated_at=now,
    )
    appointment = booking_ledger.commit_appointment(db, snapshot, appointment, max_sessions_per_day)

    logger.info(
        'New appointment created: %s by student %s with counselor %s on %s at %s',
        appointment.id,
        request.student_id,
        request.counselor_id,
        request.date,
        timeutils.format_hhmm(start),
    )
    return appointment
