"""Scheduling error taxonomy.

Every failure the scheduling core reports carries a stable ``kind`` so callers
can branch on it without parsing messages. None of them is fatal to the
process; the HTTP layer maps each one onto a status code.
"""


class SchedulingError(Exception):
    kind = 'scheduling_error'
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {'error': self.kind, 'message': self.message}


class ValidationError(SchedulingError, ValueError):
    """Malformed or out-of-range input. Fixable by the caller.

    Also a ``ValueError`` so pydantic validators can reuse the same checks.
    """
    kind = 'validation_error'
    status_code = 400


class NotFound(SchedulingError):
    kind = 'not_found'
    status_code = 404


class SlotUnavailable(SchedulingError):
    """The requested interval is not free (stale slot list or lost race)."""
    kind = 'slot_unavailable'
    status_code = 409


class InvalidTransition(SchedulingError):
    kind = 'invalid_transition'
    status_code = 409


class InvalidState(SchedulingError):
    kind = 'invalid_state'
    status_code = 409


class Forbidden(SchedulingError):
    kind = 'forbidden'
    status_code = 403
