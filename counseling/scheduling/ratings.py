import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from counseling.core import config, errors
from counseling.models.appointment import Appointment, AppointmentStatus
from counseling.models.counselor import Counselor
from counseling.scheduling import booking_ledger
from counseling.scheduling.booking import normalize_text

logger = logging.getLogger(__name__)


def validate_rating(rating: int) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise errors.ValidationError('Rating must be an integer between 1 and 5.')
    return rating


def rate_appointment(
    db: Session,
    appointment_id: int,
    student_id: int,
    rating: int,
    feedback: str | None = None,
) -> Appointment:
    """Record (or overwrite) the student's rating of a completed appointment.

    Also refreshes the counselor's average rating.
    """
    validate_rating(rating)
    feedback = normalize_text(feedback, config.MAX_FEEDBACK_LENGTH, 'Feedback')

    appointment = booking_ledger.get_appointment(db, appointment_id)
    if appointment.student_id != student_id:
        raise errors.Forbidden('Only the student can rate this appointment.')
    if appointment.status != AppointmentStatus.COMPLETED.value:
        raise errors.InvalidState('Can only rate completed appointments.')

    try:
        if not booking_ledger.set_rating_if_completed(db, appointment_id, rating, feedback):
            db.rollback()
            raise errors.InvalidState('Can only rate completed appointments.')

        average = booking_ledger.average_rating_for_counselor(db, appointment.counselor_id)
        if average is not None:
            db.query(Counselor).filter(Counselor.user_id == appointment.counselor_id).update(
                {Counselor.rating: round(average, 2)},
                synchronize_session=False,
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Rating failed for appointment %s', appointment_id)
        raise

    db.refresh(appointment)
    logger.info('Appointment rated: %s with rating %s by student %s', appointment_id, rating, student_id)
    return appointment
