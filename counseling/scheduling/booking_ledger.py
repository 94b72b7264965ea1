"""Booking ledger: the authoritative appointment store used for conflict checks.

All writes that must be exclusive go through conditional updates here:

* every booking bumps its ``CounselorDay`` row before re-checking overlaps,
  which serializes bookings for the same counselor and date;
* status changes only apply while the stored status still matches the one
  the caller validated against.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.core import errors
from counseling.models.appointment import Appointment, AppointmentStatus
from counseling.models.ledger import CounselorDay
from counseling.scheduling import timeutils

logger = logging.getLogger(__name__)

OPEN_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)


@dataclass
class LedgerSnapshot:
    counselor_id: int
    date: date
    appointments: list[Appointment] = field(default_factory=list)

    def busy_intervals(self) -> list[tuple[int, int]]:
        """Occupied intervals as minute offsets from the snapshot date's midnight."""
        day_start, _ = timeutils.day_bounds(self.date)
        intervals = []
        for appointment in self.appointments:
            start = int((appointment.start_time - day_start).total_seconds() // 60)
            end = int((appointment.end_time - day_start).total_seconds() // 60)
            intervals.append((start, end))
        return intervals


def _active(query):
    return query.filter(Appointment.status != AppointmentStatus.CANCELLED.value)


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise errors.NotFound('Appointment not found.')
    return appointment


def active_appointments_between(
    db: Session,
    counselor_id: int,
    start_time: datetime,
    end_time: datetime,
) -> list[Appointment]:
    return _active(db.query(Appointment)).filter(
        Appointment.counselor_id == counselor_id,
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    ).order_by(Appointment.start_time.asc(), Appointment.id.asc()).all()


def active_appointments_on(db: Session, counselor_id: int, on_date: date) -> list[Appointment]:
    day_start, day_end = timeutils.day_bounds(on_date)
    return active_appointments_between(db, counselor_id, day_start, day_end)


def count_active_on(db: Session, counselor_id: int, on_date: date) -> int:
    return _active(db.query(func.count(Appointment.id))).filter(
        Appointment.counselor_id == counselor_id,
        Appointment.date == on_date,
    ).scalar() or 0


def _ensure_counselor_day(db: Session, counselor_id: int, on_date: date) -> CounselorDay:
    counselor_day = db.query(CounselorDay).filter(
        CounselorDay.counselor_id == counselor_id,
        CounselorDay.date == on_date,
    ).first()
    if counselor_day is not None:
        return counselor_day

    try:
        db.add(CounselorDay(counselor_id=counselor_id, date=on_date, version=0))
        db.commit()
    except IntegrityError:
        # A concurrent request created the row first; use theirs.
        db.rollback()

    return db.query(CounselorDay).filter(
        CounselorDay.counselor_id == counselor_id,
        CounselorDay.date == on_date,
    ).populate_existing().one()


def read_snapshot(db: Session, counselor_id: int, on_date: date) -> LedgerSnapshot:
    """Live appointments for one counselor-day, making sure its guard row exists."""
    _ensure_counselor_day(db, counselor_id, on_date)
    return LedgerSnapshot(
        counselor_id=counselor_id,
        date=on_date,
        appointments=active_appointments_on(db, counselor_id, on_date),
    )


def commit_appointment(
    db: Session,
    snapshot: LedgerSnapshot,
    appointment: Appointment,
    max_sessions_per_day: int | None = None,
) -> Appointment:
    """Insert ``appointment`` unless the ledger now holds a conflicting booking.

    Bumping the ``CounselorDay`` row write-locks it until this transaction
    ends, so a concurrent booking for the same counselor and date waits here
    and then re-checks against whatever was committed first. The bump, the
    re-check and the insert share one transaction; any failure rolls all of
    them back.
    """
    try:
        claimed = db.query(CounselorDay).filter(
            CounselorDay.counselor_id == snapshot.counselor_id,
            CounselorDay.date == snapshot.date,
        ).update({CounselorDay.version: CounselorDay.version + 1}, synchronize_session=False)

        if claimed != 1:
            db.rollback()
            raise errors.SlotUnavailable('Availability changed while booking. Please pick the slot again.')

        conflicts = active_appointments_between(db, snapshot.counselor_id, appointment.start_time, appointment.end_time)
        if conflicts:
            winner_id = conflicts[0].id
            db.rollback()
            logger.info(
                'Booking lost race for counselor %s at %s to appointment %s',
                snapshot.counselor_id,
                appointment.start_time,
                winner_id,
            )
            raise errors.SlotUnavailable('This time was just booked by someone else. Please pick another slot.')

        if max_sessions_per_day is not None and count_active_on(db, snapshot.counselor_id, snapshot.date) >= max_sessions_per_day:
            db.rollback()
            raise errors.SlotUnavailable('Counselor has reached the maximum number of sessions for this day.')

        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment
    except IntegrityError as exc:
        db.rollback()
        logger.info('Booking rejected by unique index for counselor %s on %s', snapshot.counselor_id, snapshot.date)
        raise errors.SlotUnavailable('This time is already booked.') from exc
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Booking commit failed for counselor %s on %s', snapshot.counselor_id, snapshot.date)
        raise


def compare_and_set_status(
    db: Session,
    appointment_id: int,
    expected: AppointmentStatus,
    target: AppointmentStatus,
) -> bool:
    """Flush a status change only if the row still has ``expected``. Does not commit."""
    updated = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.status == expected.value,
    ).update(
        {Appointment.status: target.value, Appointment.updated_at: datetime.now()},
        synchronize_session=False,
    )
    return updated == 1


def set_rating_if_completed(
    db: Session,
    appointment_id: int,
    rating: int,
    feedback: str | None,
) -> bool:
    updated = db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.status == AppointmentStatus.COMPLETED.value,
    ).update(
        {
            Appointment.rating: rating,
            Appointment.feedback: feedback,
            Appointment.updated_at: datetime.now(),
        },
        synchronize_session=False,
    )
    return updated == 1


def average_rating_for_counselor(db: Session, counselor_id: int) -> float | None:
    value = db.query(func.avg(Appointment.rating)).filter(
        Appointment.counselor_id == counselor_id,
        Appointment.rating.is_not(None),
    ).scalar()
    return float(value) if value is not None else None


def list_appointments(
    db: Session,
    *,
    student_id: int | None = None,
    counselor_id: int | None = None,
    status: str | None = None,
    appointment_type: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Appointment], int]:
    query = db.query(Appointment)
    if student_id is not None:
        query = query.filter(Appointment.student_id == student_id)
    if counselor_id is not None:
        query = query.filter(Appointment.counselor_id == counselor_id)
    if status:
        query = query.filter(Appointment.status == status)
    if appointment_type:
        query = query.filter(Appointment.appointment_type == appointment_type)

    total = query.count()
    items = query.order_by(
        Appointment.date.asc(),
        Appointment.time.asc(),
        Appointment.id.asc(),
    ).offset((page - 1) * limit).limit(limit).all()
    return items, total


def elapsed_open_appointments(db: Session, now: datetime) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.status.in_(OPEN_STATUSES),
        Appointment.end_time <= now,
    ).order_by(Appointment.end_time.asc(), Appointment.id.asc()).all()
