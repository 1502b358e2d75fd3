import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from scheduling_backend.core import config
from scheduling_backend.core.errors import InternalError

logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sync routes run in a threadpool; each request still owns its session.
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, echo=config.SQL_ECHO, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def ensure_scheduling_schema(bind=None) -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        bind = bind or engine
        existing_tables = set(inspect(bind).get_table_names())

        with bind.begin() as connection:
            if 'availability_slots' in existing_tables:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_slots_owner_start '
                        'ON availability_slots(owner_id, start_time)'
                    )
                )
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_slots_time_range '
                        'ON availability_slots(start_time, end_time)'
                    )
                )

            if 'bookings' in existing_tables:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_bookings_time_range ON bookings(start_time, end_time)')
                )
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_slot ON bookings(slot_id) '
                        "WHERE status IN ('PENDING', 'CONFIRMED', 'COMPLETED')"
                    )
                )

        _scheduling_schema_checked = True


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        logger.exception('Scheduling schema check failed. Check DATABASE_URL and database credentials.')
        raise InternalError('Database unavailable') from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
