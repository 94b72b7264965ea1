import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from counseling.database import Base  # noqa: E402
from counseling.models.appointment import Appointment  # noqa: E402,F401
from counseling.models.availability import AvailabilityWindow  # noqa: E402
from counseling.models.counselor import Counselor  # noqa: E402
from counseling.models.ledger import CounselorDay  # noqa: E402,F401
from counseling.models.user import User  # noqa: E402

MONDAY = 1


@pytest.fixture
def scheduling_engine():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def scheduling_db(scheduling_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=scheduling_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def add_student(scheduling_db):
    def _add_student(user_id: int, email: str | None = None) -> User:
        student = User(id=user_id, email=email or f'student{user_id}@example.edu', role='student')
        scheduling_db.add(student)
        scheduling_db.commit()
        return student

    return _add_student


@pytest.fixture
def add_counselor(scheduling_db):
    def _add_counselor(
        user_id: int,
        windows=((MONDAY, time(9, 0), time(10, 0)),),
        is_accepting_bookings: bool = True,
        max_sessions_per_day: int = 8,
    ) -> Counselor:
        scheduling_db.add(User(id=user_id, email=f'counselor{user_id}@example.edu', role='counselor'))
        counselor = Counselor(
            user_id=user_id,
            is_accepting_bookings=is_accepting_bookings,
            max_sessions_per_day=max_sessions_per_day,
        )
        scheduling_db.add(counselor)
        for position, window in enumerate(windows):
            day_of_week, start_time, end_time = window[:3]
            is_available = window[3] if len(window) > 3 else True
            scheduling_db.add(
                AvailabilityWindow(
                    counselor_id=user_id,
                    day_of_week=day_of_week,
                    start_time=start_time,
                    end_time=end_time,
                    is_available=is_available,
                    position=position,
                )
            )
        scheduling_db.commit()
        return counselor

    return _add_counselor
