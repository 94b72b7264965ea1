import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from counseling.core import config
from counseling.database import Base, engine, ensure_scheduling_schema
from counseling.models import appointment, availability, counselor, ledger, user  # noqa: F401
from counseling.routes import appointment_routes, auth_routes, availability_routes
from counseling.routes.deps import request_validation_detail

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
)

app = FastAPI(title='Counseling Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    detail = request_validation_detail(exc.errors())
    logger.info('Rejected request to %s: %s', request.url.path, detail['message'])
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={'detail': detail})


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Counseling Scheduling API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/counselors')
app.include_router(appointment_routes.router, prefix='/appointments')
