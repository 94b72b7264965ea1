from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_actor
from counseling.core import errors
from counseling.models.availability import AvailabilityWindow
from counseling.models.counselor import Counselor
from counseling.models.user import Role
from counseling.routes.deps import database_unavailable, ensure_database_ready, get_db, http_error
from counseling.scheduling import availability_store, slots, timeutils
from counseling.scheduling.state_machine import Actor

router = APIRouter(tags=['availability'])


class WindowRequest(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str
    is_available: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise errors.ValidationError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return timeutils.format_hhmm(timeutils.parse_hhmm(value))


class ReplaceAvailabilityRequest(BaseModel):
    windows: list[WindowRequest]


class WindowResponse(BaseModel):
    id: int
    day_of_week: int
    start_time: str
    end_time: str
    is_available: bool


class SlotResponse(BaseModel):
    start_time: str
    end_time: str
    duration_minutes: int


class AvailableSlotsResponse(BaseModel):
    counselor_id: int
    date: date
    day_of_week: int
    slots: list[SlotResponse]


class CounselorResponse(BaseModel):
    user_id: int
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    is_accepting_bookings: bool
    max_sessions_per_day: int
    rating: float
    total_sessions: int


def to_window_response(window: AvailabilityWindow) -> WindowResponse:
    return WindowResponse(
        id=window.id,
        day_of_week=window.day_of_week,
        start_time=timeutils.format_hhmm(window.start_time),
        end_time=timeutils.format_hhmm(window.end_time),
        is_available=window.is_available,
    )


def to_counselor_response(counselor: Counselor) -> CounselorResponse:
    user = counselor.user
    return CounselorResponse(
        user_id=counselor.user_id,
        first_name=user.first_name if user else None,
        last_name=user.last_name if user else None,
        email=user.email if user else None,
        is_accepting_bookings=counselor.is_accepting_bookings,
        max_sessions_per_day=counselor.max_sessions_per_day,
        rating=counselor.rating or 0.0,
        total_sessions=counselor.total_sessions or 0,
    )


@router.get('', response_model=list[CounselorResponse])
def list_counselors(
    on_date: date | None = Query(default=None, alias='date'),
    at_time: str | None = Query(default=None, alias='time'),
    db: Session = Depends(get_db),
):
    """Bookable counselors, optionally only those with a window covering ``date`` at ``time`` (both required)."""
    ensure_database_ready()

    try:
        parsed_time = timeutils.parse_hhmm(at_time) if at_time else None
        counselors = availability_store.list_bookable_counselors(db, on_date, parsed_time)
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [to_counselor_response(counselor) for counselor in counselors]


@router.get('/{counselor_id}/slots', response_model=AvailableSlotsResponse)
def list_available_slots(
    counselor_id: int,
    on_date: date = Query(..., alias='date'),
    duration_minutes: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        sequence = slots.compute_available_slots(db, counselor_id, on_date, duration_minutes)
        slot_responses = [
            SlotResponse(
                start_time=slot.start_label,
                end_time=slot.end_label,
                duration_minutes=sequence.duration_minutes,
            )
            for slot in sequence
        ]
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return AvailableSlotsResponse(
        counselor_id=counselor_id,
        date=on_date,
        day_of_week=timeutils.day_of_week(on_date),
        slots=slot_responses,
    )


@router.get('/{counselor_id}/availability', response_model=list[WindowResponse])
def get_weekly_availability(counselor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        availability_store.get_counselor(db, counselor_id)
        windows = availability_store.list_windows(db, counselor_id)
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [to_window_response(window) for window in windows]


@router.put('/{counselor_id}/availability', response_model=list[WindowResponse])
def replace_weekly_availability(
    counselor_id: int,
    data: ReplaceAvailabilityRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    is_own_schedule = actor.role == Role.COUNSELOR and actor.id == counselor_id
    if not is_own_schedule and actor.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=errors.Forbidden('Only the counselor or an admin can change this availability.').to_detail(),
        )

    ensure_database_ready()

    try:
        windows = availability_store.replace_weekly_windows(
            db,
            counselor_id,
            [
                availability_store.WindowSpec(
                    day_of_week=window.day_of_week,
                    start_time=timeutils.parse_hhmm(window.start_time),
                    end_time=timeutils.parse_hhmm(window.end_time),
                    is_available=window.is_available,
                )
                for window in data.windows
            ],
        )
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return [to_window_response(window) for window in windows]
