"""Appointment lifecycle.

``TRANSITIONS`` is the only place that says which status changes exist and
which roles may perform them. Students and counselors may only act on their
own appointments; admins and the system actor act on any.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.core import errors
from counseling.models.appointment import Appointment, AppointmentStatus
from counseling.models.counselor import Counselor
from counseling.models.user import Role
from counseling.scheduling import booking_ledger

logger = logging.getLogger(__name__)

S = AppointmentStatus

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED, S.NO_SHOW})

TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentStatus], frozenset[Role]] = {
    (S.SCHEDULED, S.CONFIRMED): frozenset({Role.COUNSELOR, Role.ADMIN}),
    (S.SCHEDULED, S.CANCELLED): frozenset({Role.STUDENT, Role.COUNSELOR, Role.ADMIN}),
    (S.CONFIRMED, S.CANCELLED): frozenset({Role.STUDENT, Role.COUNSELOR, Role.ADMIN}),
    (S.SCHEDULED, S.COMPLETED): frozenset({Role.COUNSELOR, Role.ADMIN}),
    (S.CONFIRMED, S.COMPLETED): frozenset({Role.COUNSELOR, Role.ADMIN}),
    (S.SCHEDULED, S.NO_SHOW): frozenset({Role.COUNSELOR, Role.ADMIN, Role.SYSTEM}),
    (S.CONFIRMED, S.NO_SHOW): frozenset({Role.COUNSELOR, Role.ADMIN, Role.SYSTEM}),
}


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role


def parse_status(value) -> AppointmentStatus:
    try:
        return AppointmentStatus(value)
    except ValueError as exc:
        raise errors.ValidationError(f"Unknown appointment status '{value}'.") from exc


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_targets(current: AppointmentStatus, role: Role) -> list[AppointmentStatus]:
    return [target for (source, target), roles in TRANSITIONS.items() if source == current and role in roles]


def owns(actor: Actor, appointment: Appointment) -> bool:
    if actor.role == Role.STUDENT:
        return appointment.student_id == actor.id
    if actor.role == Role.COUNSELOR:
        return appointment.counselor_id == actor.id
    return actor.role in (Role.ADMIN, Role.SYSTEM)


def check_transition(appointment: Appointment, actor: Actor, target: AppointmentStatus) -> AppointmentStatus:
    """Raise unless ``actor`` may move ``appointment`` to ``target``; return the current status."""
    current = parse_status(appointment.status)

    if is_terminal(current):
        raise errors.InvalidTransition(f"Appointment is already '{current.value}' and cannot change.")

    roles = TRANSITIONS.get((current, target))
    if roles is None:
        raise errors.InvalidTransition(f"Cannot move appointment from '{current.value}' to '{target.value}'.")

    if actor.role not in roles:
        raise errors.Forbidden(f"Role '{actor.role.value}' may not mark appointments as '{target.value}'.")

    if not owns(actor, appointment):
        raise errors.Forbidden('You can only change your own appointments.')

    return current


def transition_appointment(db: Session, appointment_id: int, actor: Actor, target) -> Appointment:
    """Apply one status change as a compare-and-swap on the current status."""
    target = parse_status(target)
    appointment = booking_ledger.get_appointment(db, appointment_id)
    current = check_transition(appointment, actor, target)

    try:
        if not booking_ledger.compare_and_set_status(db, appointment_id, current, target):
            db.rollback()
            logger.info('Concurrent status change detected on appointment %s', appointment_id)
            raise errors.InvalidTransition('Appointment status changed concurrently. Reload and try again.')

        if target == S.COMPLETED:
            db.query(Counselor).filter(Counselor.user_id == appointment.counselor_id).update(
                {Counselor.total_sessions: Counselor.total_sessions + 1},
                synchronize_session=False,
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Status change failed for appointment %s', appointment_id)
        raise

    db.refresh(appointment)
    logger.info(
        'Appointment %s moved %s -> %s by %s %s',
        appointment_id,
        current.value,
        target.value,
        actor.role.value,
        actor.id,
    )
    return appointment
