"""Role-aware reads and non-status edits of appointments."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.core import config, errors
from counseling.models.appointment import Appointment
from counseling.models.user import Role
from counseling.scheduling import booking_ledger
from counseling.scheduling.booking import normalize_text, parse_appointment_type
from counseling.scheduling.state_machine import Actor, owns, parse_status

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50

EDITABLE_FIELDS = {
    Role.STUDENT: {'notes', 'student_notes'},
    Role.COUNSELOR: {'counselor_notes', 'location', 'meeting_link'},
    Role.ADMIN: {'notes', 'student_notes', 'counselor_notes', 'location', 'meeting_link'},
}

FIELD_LIMITS = {
    'notes': (config.MAX_NOTES_LENGTH, 'Notes'),
    'student_notes': (config.MAX_STUDENT_NOTES_LENGTH, 'Student notes'),
    'counselor_notes': (config.MAX_COUNSELOR_NOTES_LENGTH, 'Counselor notes'),
    'location': (config.MAX_LOCATION_LENGTH, 'Location'),
    'meeting_link': (config.MAX_MEETING_LINK_LENGTH, 'Meeting link'),
}


@dataclass
class AppointmentPage:
    appointments: list[Appointment]
    current_page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    @property
    def has_next(self) -> bool:
        return (self.current_page - 1) * self.limit + len(self.appointments) < self.total

    @property
    def has_prev(self) -> bool:
        return self.current_page > 1


def get_for_actor(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    appointment = booking_ledger.get_appointment(db, appointment_id)
    if not owns(actor, appointment):
        raise errors.Forbidden('Access denied.')
    return appointment


def list_for_actor(
    db: Session,
    actor: Actor,
    status: str | None = None,
    appointment_type: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> AppointmentPage:
    if page < 1:
        raise errors.ValidationError('Page must be a positive integer.')
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise errors.ValidationError(f'Limit must be between 1 and {MAX_PAGE_SIZE}.')
    if status:
        status = parse_status(status).value
    if appointment_type:
        appointment_type = parse_appointment_type(appointment_type).value

    scope = {}
    if actor.role == Role.STUDENT:
        scope['student_id'] = actor.id
    elif actor.role == Role.COUNSELOR:
        scope['counselor_id'] = actor.id
    elif actor.role != Role.ADMIN:
        raise errors.Forbidden('Access denied.')

    items, total = booking_ledger.list_appointments(
        db,
        status=status,
        appointment_type=appointment_type,
        page=page,
        limit=limit,
        **scope,
    )
    return AppointmentPage(appointments=items, current_page=page, limit=limit, total=total)


def update_details(db: Session, appointment_id: int, actor: Actor, changes: dict) -> Appointment:
    """Edit free-text fields. Status is deliberately not editable here."""
    appointment = get_for_actor(db, appointment_id, actor)

    allowed = EDITABLE_FIELDS.get(actor.role, set())
    rejected = sorted(set(changes) - allowed)
    if rejected:
        raise errors.Forbidden(f"Role '{actor.role.value}' cannot update: {', '.join(rejected)}.")

    for field_name, value in changes.items():
        max_length, label = FIELD_LIMITS[field_name]
        setattr(appointment, field_name, normalize_text(value, max_length, label))
    appointment.updated_at = datetime.now()

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to update appointment %s', appointment_id)
        raise

    db.refresh(appointment)
    logger.info('Appointment updated: %s by %s %s', appointment_id, actor.role.value, actor.id)
    return appointment
