from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.auth.dependencies import get_current_actor
from counseling.core import config, errors
from counseling.models.appointment import Appointment, AppointmentStatus, AppointmentType
from counseling.models.user import Role
from counseling.routes.deps import database_unavailable, ensure_database_ready, get_db, http_error
from counseling.scheduling import appointments, booking, notifications, ratings, slots, state_machine, timeutils
from counseling.scheduling.state_machine import Actor

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    counselor_id: int
    date: date
    time: str
    duration_minutes: int = config.DEFAULT_APPOINTMENT_MINUTES
    appointment_type: str = AppointmentType.INDIVIDUAL.value
    notes: str | None = None
    student_notes: str | None = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return timeutils.format_hhmm(timeutils.parse_hhmm(value))

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        slots.validate_duration(value)
        return value

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        return booking.parse_appointment_type(value).value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return booking.normalize_text(value, config.MAX_NOTES_LENGTH, 'Notes')

    @field_validator('student_notes')
    @classmethod
    def validate_student_notes(cls, value: str | None) -> str | None:
        return booking.normalize_text(value, config.MAX_STUDENT_NOTES_LENGTH, 'Student notes')


class TransitionRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return state_machine.parse_status(value.strip().lower()).value


class RateAppointmentRequest(BaseModel):
    rating: int
    feedback: str | None = None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: int) -> int:
        return ratings.validate_rating(value)

    @field_validator('feedback')
    @classmethod
    def validate_feedback(cls, value: str | None) -> str | None:
        return booking.normalize_text(value, config.MAX_FEEDBACK_LENGTH, 'Feedback')


class UpdateAppointmentRequest(BaseModel):
    notes: str | None = None
    student_notes: str | None = None
    counselor_notes: str | None = None
    location: str | None = None
    meeting_link: str | None = None

    @field_validator('meeting_link')
    @classmethod
    def validate_meeting_link(cls, value: str | None) -> str | None:
        normalized = booking.normalize_text(value, config.MAX_MEETING_LINK_LENGTH, 'Meeting link')
        if normalized and not normalized.startswith(('http://', 'https://')):
            raise errors.ValidationError('Meeting link must be an http(s) URL.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    student_id: int
    counselor_id: int
    date: date
    time: str
    duration_minutes: int
    appointment_type: str
    status: str
    start_time: datetime
    end_time: datetime
    notes: str | None = None
    student_notes: str | None = None
    counselor_notes: str | None = None
    location: str | None = None
    meeting_link: str | None = None
    rating: int | None = None
    feedback: str | None = None
    available_transitions: list[str] = []


class PaginationResponse(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next: bool
    has_prev: bool


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    pagination: PaginationResponse


def to_appointment_response(appointment: Appointment, actor: Actor | None = None) -> AppointmentResponse:
    current = AppointmentStatus(appointment.status)
    transitions = []
    if actor is not None and state_machine.owns(actor, appointment):
        transitions = [target.value for target in state_machine.allowed_targets(current, actor.role)]

    return AppointmentResponse(
        id=appointment.id,
        student_id=appointment.student_id,
        counselor_id=appointment.counselor_id,
        date=appointment.date,
        time=timeutils.format_hhmm(appointment.time),
        duration_minutes=appointment.duration_minutes,
        appointment_type=appointment.appointment_type,
        status=appointment.status,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        notes=appointment.notes,
        student_notes=appointment.student_notes,
        counselor_notes=appointment.counselor_notes,
        location=appointment.location,
        meeting_link=appointment.meeting_link,
        rating=appointment.rating,
        feedback=appointment.feedback,
        available_transitions=transitions,
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    if actor.role != Role.STUDENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=errors.Forbidden('Only students can book appointments.').to_detail(),
        )

    ensure_database_ready()

    try:
        appointment = booking.book_appointment(
            db,
            booking.BookingRequest(
                student_id=actor.id,
                counselor_id=data.counselor_id,
                date=data.date,
                time=data.time,
                duration_minutes=data.duration_minutes,
                appointment_type=data.appointment_type,
                notes=data.notes,
                student_notes=data.student_notes,
            ),
        )
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    background_tasks.add_task(
        notifications.notify_counselor_of_booking,
        appointment.id,
        appointment.counselor_id,
        appointment.student_id,
        appointment.start_time.isoformat(),
    )
    return to_appointment_response(appointment, actor)


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    appointment_type: str | None = Query(default=None, alias='type'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=appointments.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = appointments.list_for_actor(
            db,
            actor,
            status=status_filter,
            appointment_type=appointment_type,
            page=page,
            limit=limit,
        )
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return AppointmentListResponse(
        appointments=[to_appointment_response(appointment, actor) for appointment in result.appointments],
        pagination=PaginationResponse(
            current_page=result.current_page,
            total_pages=result.total_pages,
            total=result.total,
            has_next=result.has_next,
            has_prev=result.has_prev,
        ),
    )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = appointments.get_for_actor(db, appointment_id, actor)
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_appointment_response(appointment, actor)


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=errors.ValidationError('No fields to update.').to_detail(),
        )

    ensure_database_ready()

    try:
        appointment = appointments.update_details(db, appointment_id, actor, changes)
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return to_appointment_response(appointment, actor)


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def transition_appointment(
    appointment_id: int,
    data: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = state_machine.transition_appointment(db, appointment_id, actor, data.status)
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return to_appointment_response(appointment, actor)


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = state_machine.transition_appointment(
            db,
            appointment_id,
            actor,
            AppointmentStatus.CANCELLED,
        )
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return to_appointment_response(appointment, actor)


@router.post('/{appointment_id}/rate', response_model=AppointmentResponse)
def rate_appointment(
    appointment_id: int,
    data: RateAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    if actor.role != Role.STUDENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=errors.Forbidden('Only the student can rate this appointment.').to_detail(),
        )

    ensure_database_ready()

    try:
        appointment = ratings.rate_appointment(db, appointment_id, actor.id, data.rating, data.feedback)
    except errors.SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return to_appointment_response(appointment, actor)
