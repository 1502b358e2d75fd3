import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from scheduling_backend.core import config
from scheduling_backend.core.errors import InternalError, SchedulingError
from scheduling_backend.database import Base, engine, ensure_scheduling_schema
from scheduling_backend.models import availability, booking, notification, user  # noqa: F401
from scheduling_backend.routes import booking_routes, calendar_routes, notification_routes

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def describe_validation_errors(errors) -> str:
    messages = []
    for error in errors:
        location = '.'.join(str(part) for part in error.get('loc', ())[1:])
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get('msg')))
    return '; '.join(messages) or 'Invalid request'


@app.exception_handler(SchedulingError)
async def handle_scheduling_error(request: Request, exc: SchedulingError):
    return JSONResponse(status_code=exc.status_code, content={'error': exc.message})


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={'error': describe_validation_errors(exc.errors())})


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError):
    logger.error('Unhandled database error on %s %s', request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={'error': InternalError.default_message})


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
    return {'status': 'Scheduling API Running'}


app.include_router(calendar_routes.router, prefix='/calendar')
app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(notification_routes.router, prefix='/notifications')
