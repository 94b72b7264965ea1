import logging
from datetime import datetime

from sqlalchemy.orm import Session

from counseling.core import errors
from counseling.models.appointment import AppointmentStatus
from counseling.models.user import Role
from counseling.scheduling import booking_ledger
from counseling.scheduling.state_machine import Actor, transition_appointment

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor(id=0, role=Role.SYSTEM)


def mark_elapsed_no_shows(db: Session, now: datetime | None = None) -> list[int]:
    """Move open appointments whose end has passed to ``no-show``.

    Goes through the state machine like any other caller, so an appointment
    completed or cancelled in the meantime is skipped.
    """
    now = now or datetime.now()
    marked: list[int] = []

    for appointment_id in [appointment.id for appointment in booking_ledger.elapsed_open_appointments(db, now)]:
        try:
            transition_appointment(db, appointment_id, SYSTEM_ACTOR, AppointmentStatus.NO_SHOW)
        except errors.InvalidTransition:
            logger.info('Skipping appointment %s: status changed before no-show sweep', appointment_id)
            continue
        marked.append(appointment_id)

    logger.info('No-show sweep marked %d appointments', len(marked))
    return marked
