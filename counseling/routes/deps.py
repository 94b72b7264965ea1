from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from counseling.core import errors
from counseling.database import SessionLocal, ensure_scheduling_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def http_error(exc: errors.SchedulingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def request_validation_detail(problems) -> dict:
    """Error body for a request that failed model validation, shaped like ``http_error``'s."""
    if not problems:
        return errors.ValidationError('Invalid request.').to_detail()

    problem = problems[0]
    cause = (problem.get('ctx') or {}).get('error')
    if isinstance(cause, errors.SchedulingError):
        return errors.ValidationError(cause.message).to_detail()

    location = '.'.join(str(part) for part in problem.get('loc', ()) if part not in ('body', 'query', 'path'))
    message = problem.get('msg', 'Invalid value.')
    return errors.ValidationError(f'{location}: {message}' if location else message).to_detail()
