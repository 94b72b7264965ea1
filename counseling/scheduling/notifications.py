import logging

from counseling.core import config

logger = logging.getLogger(__name__)


def notify_counselor_of_booking(appointment_id: int, counselor_id: int, student_id: int, starts_at: str) -> None:
    """Hand a new-booking notice to the notification collaborator.

    Runs as a background task after the booking response has been sent, so
    it has no say in whether the booking succeeded.
    """
    if not config.NOTIFICATIONS_ENABLED:
        return

    logger.info(
        'Notify counselor %s: appointment %s booked by student %s at %s',
        counselor_id,
        appointment_id,
        student_id,
        starts_at,
    )
