"""Availability store: counselors and their recurring weekly windows.

Reads always go to the database; nothing here is cached between requests.
"""

import logging
from datetime import date, time
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.core import errors
from counseling.models.availability import AvailabilityWindow
from counseling.models.counselor import Counselor
from counseling.scheduling import timeutils

logger = logging.getLogger(__name__)


class WindowSpec(NamedTuple):
    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool = True


def get_counselor(db: Session, counselor_id: int) -> Counselor:
    counselor = db.query(Counselor).filter(Counselor.user_id == counselor_id).first()
    if counselor is None:
        raise errors.NotFound('Counselor not found.')
    return counselor


def get_bookable_counselor(db: Session, counselor_id: int) -> Counselor:
    counselor = get_counselor(db, counselor_id)
    if not counselor.is_accepting_bookings:
        raise errors.NotFound('Counselor not found or not accepting bookings.')
    return counselor


def list_windows(
    db: Session,
    counselor_id: int,
    day_of_week: int | None = None,
    available_only: bool = False,
) -> list[AvailabilityWindow]:
    """Windows in declaration order (per weekday when no weekday is given)."""
    query = db.query(AvailabilityWindow).filter(AvailabilityWindow.counselor_id == counselor_id)
    if day_of_week is not None:
        query = query.filter(AvailabilityWindow.day_of_week == day_of_week)
    if available_only:
        query = query.filter(AvailabilityWindow.is_available.is_(True))
    return query.order_by(
        AvailabilityWindow.day_of_week.asc(),
        AvailabilityWindow.position.asc(),
        AvailabilityWindow.id.asc(),
    ).all()


def windows_for_date(db: Session, counselor_id: int, on_date: date) -> list[AvailabilityWindow]:
    return list_windows(db, counselor_id, timeutils.day_of_week(on_date), available_only=True)


def validate_windows(windows: list[WindowSpec]) -> None:
    by_day: dict[int, list[WindowSpec]] = {}
    for window in windows:
        if not 0 <= window.day_of_week <= 6:
            raise errors.ValidationError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')
        if window.start_time >= window.end_time:
            raise errors.ValidationError(
                f'Window {timeutils.format_hhmm(window.start_time)}-{timeutils.format_hhmm(window.end_time)} '
                'must start before it ends.'
            )
        by_day.setdefault(window.day_of_week, []).append(window)

    for day, day_windows in by_day.items():
        ordered = sorted(day_windows, key=lambda item: item.start_time)
        for previous, current in zip(ordered, ordered[1:]):
            if current.start_time < previous.end_time:
                raise errors.ValidationError(f'Availability windows overlap on day {day}.')


def replace_weekly_windows(db: Session, counselor_id: int, windows: list[WindowSpec]) -> list[AvailabilityWindow]:
    """Swap a counselor's whole weekly schedule in one transaction."""
    validate_windows(windows)
    get_counselor(db, counselor_id)

    try:
        db.query(AvailabilityWindow).filter(
            AvailabilityWindow.counselor_id == counselor_id,
        ).delete(synchronize_session=False)

        for position, window in enumerate(windows):
            db.add(
                AvailabilityWindow(
                    counselor_id=counselor_id,
                    day_of_week=window.day_of_week,
                    start_time=window.start_time,
                    end_time=window.end_time,
                    is_available=window.is_available,
                    position=position,
                )
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to replace availability for counselor %s', counselor_id)
        raise

    logger.info('Replaced availability for counselor %s with %d windows', counselor_id, len(windows))
    return list_windows(db, counselor_id)


def list_bookable_counselors(
    db: Session,
    on_date: date | None = None,
    at_time: time | None = None,
) -> list[Counselor]:
    if (on_date is None) != (at_time is None):
        raise errors.ValidationError('Filter counselors by date and time together.')

    counselors = db.query(Counselor).filter(
        Counselor.is_accepting_bookings.is_(True),
    ).order_by(Counselor.rating.desc(), Counselor.total_sessions.desc(), Counselor.user_id.asc()).all()

    if on_date is None:
        return counselors

    weekday = timeutils.day_of_week(on_date)
    matching = []
    for counselor in counselors:
        for window in list_windows(db, counselor.user_id, weekday, available_only=True):
            if window.start_time <= at_time < window.end_time:
                matching.append(counselor)
                break
    return matching
