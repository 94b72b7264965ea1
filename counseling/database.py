import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./counseling.db")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_INDEXES = [
    ('appointments', 'CREATE INDEX IF NOT EXISTS idx_appointments_counselor_date ON appointments(counselor_id, date)'),
    ('appointments', 'CREATE INDEX IF NOT EXISTS idx_appointments_student_date ON appointments(student_id, date)'),
    ('appointments', 'CREATE INDEX IF NOT EXISTS idx_appointments_status ON appointments(status)'),
    ('appointments', 'CREATE INDEX IF NOT EXISTS idx_appointments_time_range ON appointments(start_time, end_time)'),
    (
        'availability_windows',
        'CREATE INDEX IF NOT EXISTS idx_availability_counselor_day ON availability_windows(counselor_id, day_of_week)',
    ),
]


def ensure_scheduling_schema(bind=None) -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked and bind is None:
        return

    target = bind if bind is not None else engine

    with _schema_lock:
        if _scheduling_schema_checked and bind is None:
            return

        inspector = inspect(target)
        existing_tables = set(inspector.get_table_names())

        with target.begin() as connection:
            for table_name, statement in SCHEDULING_INDEXES:
                if table_name in existing_tables:
                    connection.execute(text(statement))

        if bind is None:
            _scheduling_schema_checked = True
