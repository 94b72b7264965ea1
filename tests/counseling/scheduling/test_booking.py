import threading
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from counseling.core import errors
from counseling.database import Base
from counseling.models.appointment import Appointment
from counseling.models.availability import AvailabilityWindow
from counseling.models.counselor import Counselor
from counseling.models.user import Role, User
from counseling.scheduling import booking_ledger
from counseling.scheduling.booking import BookingRequest, book_appointment
from counseling.scheduling.slots import compute_available_slots
from counseling.scheduling.state_machine import Actor, transition_appointment

NOW = datetime(2026, 1, 1, 8, 0)
MONDAY = date(2026, 1, 5)


def _request(student_id=10, counselor_id=1, booking_date=MONDAY, booking_time='09:00', duration=15, **kwargs):
    return BookingRequest(
        student_id=student_id,
        counselor_id=counselor_id,
        date=booking_date,
        time=booking_time,
        duration_minutes=duration,
        **kwargs,
    )


def _labels(db, counselor_id=1, duration=None) -> list[str]:
    return [slot.start_label for slot in compute_available_slots(db, counselor_id, MONDAY, duration)]


@pytest.fixture
def monday_counselor(scheduling_db, add_counselor, add_student):
    add_counselor(1)
    add_student(10)
    add_student(11)
    return scheduling_db


def test_booking_creates_scheduled_appointment(monday_counselor) -> None:
    appointment = book_appointment(
        monday_counselor,
        _request(booking_time='9:15', appointment_type=' Group ', notes='  first visit  '),
        now=NOW,
    )

    assert appointment.id is not None
    assert appointment.status == 'scheduled'
    assert appointment.time == time(9, 15)
    assert appointment.appointment_type == 'group'
    assert appointment.notes == 'first visit'
    assert appointment.start_time == datetime(2026, 1, 5, 9, 15)
    assert appointment.end_time == datetime(2026, 1, 5, 9, 30)


def test_booked_slot_disappears_from_following_slot_query(monday_counselor) -> None:
    assert _labels(monday_counselor) == ['09:00', '09:15', '09:30', '09:45']

    book_appointment(monday_counselor, _request(booking_time='09:15'), now=NOW)

    assert _labels(monday_counselor) == ['09:00', '09:30', '09:45']


def test_booking_a_past_date_is_a_validation_error(monday_counselor) -> None:
    with pytest.raises(errors.ValidationError) as exception_info:
        book_appointment(monday_counselor, _request(), now=datetime(2026, 1, 6, 8, 0))

    assert exception_info.value.message == 'Appointment date cannot be in the past.'


def test_booking_earlier_today_is_a_validation_error(monday_counselor) -> None:
    with pytest.raises(errors.ValidationError):
        book_appointment(monday_counselor, _request(booking_time='09:00'), now=datetime(2026, 1, 5, 9, 5))


def test_booking_later_today_is_allowed(monday_counselor) -> None:
    appointment = book_appointment(monday_counselor, _request(booking_time='09:30'), now=datetime(2026, 1, 5, 9, 5))

    assert appointment.time == time(9, 30)


def test_booking_months_ahead_is_allowed_by_default(monday_counselor) -> None:
    far_monday = MONDAY + timedelta(weeks=20)

    appointment = book_appointment(monday_counselor, _request(booking_date=far_monday), now=NOW)

    assert appointment.date == far_monday
    assert appointment.status == 'scheduled'


def test_configured_booking_horizon_is_enforced(monday_counselor, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('counseling.core.config.BOOKING_HORIZON_DAYS', 90)

    with pytest.raises(errors.ValidationError) as exception_info:
        book_appointment(monday_counselor, _request(booking_date=MONDAY + timedelta(weeks=20)), now=NOW)

    assert exception_info.value.message == 'Appointments cannot be scheduled more than 90 days in advance.'
    assert book_appointment(monday_counselor, _request(booking_date=MONDAY + timedelta(weeks=12)), now=NOW).id is not None


@pytest.mark.parametrize(
    ('overrides', 'message'),
    [
        ({'booking_time': '9:7'}, "Invalid time '9:7'. Use 24-hour HH:MM."),
        ({'booking_time': '24:00'}, "Invalid time '24:00'. Use 24-hour HH:MM."),
        ({'duration': 10}, 'Duration must be between 15 and 180 minutes.'),
        ({'duration': 181}, 'Duration must be between 15 and 180 minutes.'),
        ({'appointment_type': 'couples'}, 'Invalid appointment type.'),
        ({'notes': 'x' * 1001}, 'Notes must be 1000 characters or fewer.'),
    ],
)
def test_malformed_requests_are_validation_errors(monday_counselor, overrides, message) -> None:
    with pytest.raises(errors.ValidationError) as exception_info:
        book_appointment(monday_counselor, _request(**overrides), now=NOW)

    assert exception_info.value.message == message


def test_unknown_counselor_is_not_found(monday_counselor) -> None:
    with pytest.raises(errors.NotFound):
        book_appointment(monday_counselor, _request(counselor_id=404), now=NOW)


def test_counselor_not_accepting_bookings_is_not_found(scheduling_db, add_counselor, add_student) -> None:
    add_counselor(2, is_accepting_bookings=False)
    add_student(10)

    with pytest.raises(errors.NotFound):
        book_appointment(scheduling_db, _request(counselor_id=2), now=NOW)


def test_unknown_student_is_not_found(monday_counselor) -> None:
    with pytest.raises(errors.NotFound):
        book_appointment(monday_counselor, _request(student_id=404), now=NOW)


def test_counselor_cannot_be_booked_as_student(monday_counselor) -> None:
    with pytest.raises(errors.NotFound):
        book_appointment(monday_counselor, _request(student_id=1), now=NOW)


@pytest.mark.parametrize(
    ('booking_time', 'duration'),
    [
        ('08:45', 15),
        ('09:50', 15),
        ('09:45', 30),
        ('09:10', 15),
        ('11:00', 15),
    ],
)
def test_requests_outside_the_slot_grid_are_unavailable(monday_counselor, booking_time, duration) -> None:
    with pytest.raises(errors.SlotUnavailable):
        book_appointment(monday_counselor, _request(booking_time=booking_time, duration=duration), now=NOW)


def test_overlapping_booking_is_unavailable(monday_counselor) -> None:
    book_appointment(monday_counselor, _request(booking_time='09:00', duration=30), now=NOW)

    with pytest.raises(errors.SlotUnavailable):
        book_appointment(monday_counselor, _request(student_id=11, booking_time='09:15'), now=NOW)

    assert _labels(monday_counselor) == ['09:30', '09:45']


def test_same_slot_twice_only_succeeds_once(monday_counselor) -> None:
    book_appointment(monday_counselor, _request(), now=NOW)

    with pytest.raises(errors.SlotUnavailable):
        book_appointment(monday_counselor, _request(student_id=11), now=NOW)

    assert monday_counselor.query(Appointment).count() == 1


def test_cancelled_interval_can_be_booked_again(monday_counselor) -> None:
    first = book_appointment(monday_counselor, _request(booking_time='09:15'), now=NOW)
    transition_appointment(monday_counselor, first.id, Actor(id=10, role=Role.STUDENT), 'cancelled')

    second = book_appointment(monday_counselor, _request(student_id=11, booking_time='09:15'), now=NOW)

    assert second.status == 'scheduled'
    assert monday_counselor.query(Appointment).filter(Appointment.status != 'cancelled').count() == 1


def test_daily_session_limit_is_enforced(scheduling_db, add_counselor, add_student) -> None:
    add_counselor(1, max_sessions_per_day=1)
    add_student(10)
    add_student(11)
    book_appointment(scheduling_db, _request(booking_time='09:00'), now=NOW)

    with pytest.raises(errors.SlotUnavailable) as exception_info:
        book_appointment(scheduling_db, _request(student_id=11, booking_time='09:30'), now=NOW)

    assert 'maximum number of sessions' in exception_info.value.message


def test_stale_snapshot_loses_to_committed_overlapping_booking(monday_counselor) -> None:
    stale = booking_ledger.read_snapshot(monday_counselor, 1, MONDAY)
    book_appointment(monday_counselor, _request(booking_time='09:00', duration=30), now=NOW)

    late = Appointment(
        student_id=11,
        counselor_id=1,
        date=MONDAY,
        time=time(9, 15),
        duration_minutes=15,
        appointment_type='individual',
        status='scheduled',
        start_time=datetime(2026, 1, 5, 9, 15),
        end_time=datetime(2026, 1, 5, 9, 30),
    )
    with pytest.raises(errors.SlotUnavailable):
        booking_ledger.commit_appointment(monday_counselor, stale, late)

    assert monday_counselor.query(Appointment).count() == 1


def test_stale_snapshot_still_commits_a_non_overlapping_booking(monday_counselor) -> None:
    stale = booking_ledger.read_snapshot(monday_counselor, 1, MONDAY)
    book_appointment(monday_counselor, _request(booking_time='09:00'), now=NOW)

    other = Appointment(
        student_id=11,
        counselor_id=1,
        date=MONDAY,
        time=time(9, 30),
        duration_minutes=15,
        appointment_type='individual',
        status='scheduled',
        start_time=datetime(2026, 1, 5, 9, 30),
        end_time=datetime(2026, 1, 5, 9, 45),
    )
    committed = booking_ledger.commit_appointment(monday_counselor, stale, other)

    assert committed.id is not None
    assert _labels(monday_counselor) == ['09:15', '09:45']


def test_unique_index_rejects_second_live_booking_at_same_start(monday_counselor, monkeypatch) -> None:
    book_appointment(monday_counselor, _request(booking_time='09:00'), now=NOW)
    duplicate = Appointment(
        student_id=11,
        counselor_id=1,
        date=MONDAY,
        time=time(9, 0),
        duration_minutes=15,
        appointment_type='individual',
        status='scheduled',
        start_time=datetime(2026, 1, 5, 9, 0),
        end_time=datetime(2026, 1, 5, 9, 15),
    )
    snapshot = booking_ledger.LedgerSnapshot(counselor_id=1, date=MONDAY)

    # Skip the overlap re-check so the insert reaches the index.
    monkeypatch.setattr(booking_ledger, 'active_appointments_between', lambda *args, **kwargs: [])
    with pytest.raises(errors.SlotUnavailable):
        booking_ledger.commit_appointment(monday_counselor, snapshot, duplicate)

    assert monday_counselor.query(Appointment).count() == 1


@pytest.fixture
def race_sessions(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = session_factory()
    setup.add_all(
        [
            User(id=1, email='counselor1@example.edu', role='counselor'),
            User(id=10, email='student10@example.edu', role='student'),
            User(id=11, email='student11@example.edu', role='student'),
        ]
    )
    setup.add(Counselor(user_id=1, is_accepting_bookings=True, max_sessions_per_day=8))
    setup.add(AvailabilityWindow(counselor_id=1, day_of_week=1, start_time=time(9, 0), end_time=time(10, 0)))
    setup.commit()
    setup.close()

    first, second = session_factory(), session_factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        engine.dispose()


@pytest.fixture
def race_session_factory(race_sessions):
    first, _ = race_sessions
    return sessionmaker(autocommit=False, autoflush=False, bind=first.get_bind())


def test_interleaved_stale_snapshots_from_two_sessions_yield_one_booking(race_sessions) -> None:
    first, second = race_sessions

    # Both requests read the ledger before either commits.
    first_snapshot = booking_ledger.read_snapshot(first, 1, MONDAY)
    second_snapshot = booking_ledger.read_snapshot(second, 1, MONDAY)
    assert first_snapshot.appointments == second_snapshot.appointments == []

    def _candidate(student_id):
        return Appointment(
            student_id=student_id,
            counselor_id=1,
            date=MONDAY,
            time=time(9, 0),
            duration_minutes=15,
            appointment_type='individual',
            status='scheduled',
            start_time=datetime(2026, 1, 5, 9, 0),
            end_time=datetime(2026, 1, 5, 9, 15),
        )

    winner = booking_ledger.commit_appointment(first, first_snapshot, _candidate(10))
    with pytest.raises(errors.SlotUnavailable):
        booking_ledger.commit_appointment(second, second_snapshot, _candidate(11))

    assert winner.student_id == 10
    assert second.query(Appointment).count() == 1


@pytest.mark.parametrize('attempt', range(3))
def test_concurrent_bookings_for_the_same_slot_have_one_winner(race_session_factory, attempt) -> None:
    barrier = threading.Barrier(2)
    outcomes = {}

    def _book(student_id):
        db = race_session_factory()
        try:
            barrier.wait(timeout=10)
            outcomes[student_id] = book_appointment(db, _request(student_id=student_id), now=NOW).student_id
        except Exception as exc:
            outcomes[student_id] = exc
        finally:
            db.close()

    workers = [threading.Thread(target=_book, args=(student_id,)) for student_id in (10, 11)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=60)

    assert sorted(outcomes) == [10, 11]
    winners = [value for value in outcomes.values() if isinstance(value, int)]
    losers = [value for value in outcomes.values() if isinstance(value, errors.SlotUnavailable)]
    assert len(winners) == 1, outcomes
    assert len(losers) == 1, outcomes

    check = race_session_factory()
    try:
        booked = check.query(Appointment).filter(Appointment.status != 'cancelled').all()
        assert [appointment.student_id for appointment in booked] == winners
    finally:
        check.close()
