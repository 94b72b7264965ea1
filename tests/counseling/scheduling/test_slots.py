from datetime import date, datetime, time, timedelta

import pytest

from counseling.core import errors
from counseling.models.appointment import Appointment
from counseling.scheduling import timeutils
from counseling.scheduling.slots import Slot, SlotSequence, compute_available_slots

MONDAY = date(2026, 1, 5)
TUESDAY = date(2026, 1, 6)


def _labels(sequence) -> list[str]:
    return [slot.start_label for slot in sequence]


def _add_appointment(db, counselor_id, start, minutes, status='scheduled', student_id=100) -> Appointment:
    start_time = datetime.combine(MONDAY, start)
    appointment = Appointment(
        student_id=student_id,
        counselor_id=counselor_id,
        date=MONDAY,
        time=start,
        duration_minutes=minutes,
        appointment_type='individual',
        status=status,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=minutes),
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_day_of_week_counts_from_sunday() -> None:
    assert timeutils.day_of_week(date(2026, 1, 4)) == 0
    assert timeutils.day_of_week(MONDAY) == 1
    assert timeutils.day_of_week(date(2026, 1, 10)) == 6


def test_slot_sequence_walks_window_in_granularity_steps() -> None:
    sequence = SlotSequence(windows=[(540, 600)], busy=[], duration_minutes=15, granularity_minutes=15)

    assert list(sequence) == [
        Slot(time(9, 0), time(9, 15)),
        Slot(time(9, 15), time(9, 30)),
        Slot(time(9, 30), time(9, 45)),
        Slot(time(9, 45), time(10, 0)),
    ]


def test_slot_sequence_is_restartable() -> None:
    sequence = SlotSequence(windows=[(540, 600)], busy=[(555, 570)], duration_minutes=15)

    assert _labels(sequence) == _labels(sequence) == ['09:00', '09:30', '09:45']


def test_slot_sequence_drops_slots_that_do_not_fit_the_duration() -> None:
    sequence = SlotSequence(windows=[(540, 600)], busy=[], duration_minutes=60)

    assert _labels(sequence) == ['09:00']


def test_slot_sequence_orders_across_windows_by_start_time() -> None:
    sequence = SlotSequence(windows=[(840, 870), (540, 570)], busy=[], duration_minutes=15)

    assert _labels(sequence) == ['09:00', '09:15', '14:00', '14:15']


def test_slot_sequence_breaks_start_ties_by_declaration_order() -> None:
    sequence = SlotSequence(windows=[(540, 555), (540, 570)], busy=[], duration_minutes=15)

    slots = list(sequence)

    assert [slot.start_label for slot in slots] == ['09:00', '09:00', '09:15']
    assert slots[0] == Slot(time(9, 0), time(9, 15))


def test_slot_sequence_rejects_non_positive_duration() -> None:
    with pytest.raises(errors.ValidationError):
        SlotSequence(windows=[(540, 600)], busy=[], duration_minutes=0)


def test_monday_window_yields_four_quarter_hour_slots(scheduling_db, add_counselor) -> None:
    add_counselor(1)

    sequence = compute_available_slots(scheduling_db, 1, MONDAY)

    assert _labels(sequence) == ['09:00', '09:15', '09:30', '09:45']
    assert [slot.end_label for slot in sequence] == ['09:15', '09:30', '09:45', '10:00']


def test_slots_exclude_live_appointments_but_not_cancelled_ones(scheduling_db, add_counselor) -> None:
    add_counselor(1)
    _add_appointment(scheduling_db, 1, time(9, 15), 15)
    _add_appointment(scheduling_db, 1, time(9, 30), 15, status='cancelled', student_id=101)

    assert _labels(compute_available_slots(scheduling_db, 1, MONDAY)) == ['09:00', '09:30', '09:45']


def test_completed_and_no_show_appointments_still_block_slots(scheduling_db, add_counselor) -> None:
    add_counselor(1)
    _add_appointment(scheduling_db, 1, time(9, 0), 15, status='completed')
    _add_appointment(scheduling_db, 1, time(9, 45), 15, status='no-show', student_id=101)

    assert _labels(compute_available_slots(scheduling_db, 1, MONDAY)) == ['09:15', '09:30']


def test_slots_are_disjoint_from_every_live_appointment(scheduling_db, add_counselor) -> None:
    add_counselor(1, windows=[(1, time(8, 0), time(12, 0)), (1, time(13, 0), time(17, 0))])
    booked = [
        _add_appointment(scheduling_db, 1, time(8, 30), 45),
        _add_appointment(scheduling_db, 1, time(10, 0), 90, student_id=101),
        _add_appointment(scheduling_db, 1, time(14, 15), 30, student_id=102),
    ]
    intervals = [(appointment.start_time.time(), appointment.end_time.time()) for appointment in booked]

    for duration in (15, 30, 60):
        for slot in compute_available_slots(scheduling_db, 1, MONDAY, duration):
            for start, end in intervals:
                assert not timeutils.intervals_overlap(slot.start, slot.end, start, end)


def test_wider_duration_blocks_slots_that_would_run_into_a_booking(scheduling_db, add_counselor) -> None:
    add_counselor(1)
    _add_appointment(scheduling_db, 1, time(9, 30), 15)

    assert _labels(compute_available_slots(scheduling_db, 1, MONDAY, 30)) == ['09:00']


def test_no_window_on_weekday_returns_empty_sequence(scheduling_db, add_counselor) -> None:
    add_counselor(1)

    assert list(compute_available_slots(scheduling_db, 1, TUESDAY)) == []


def test_unavailable_windows_are_ignored(scheduling_db, add_counselor) -> None:
    add_counselor(1, windows=[(1, time(9, 0), time(10, 0), False), (1, time(11, 0), time(11, 30))])

    assert _labels(compute_available_slots(scheduling_db, 1, MONDAY)) == ['11:00', '11:15']


def test_counselor_not_accepting_bookings_has_no_slots(scheduling_db, add_counselor) -> None:
    add_counselor(1, is_accepting_bookings=False)

    assert list(compute_available_slots(scheduling_db, 1, MONDAY)) == []


def test_past_dates_can_still_be_queried(scheduling_db, add_counselor) -> None:
    add_counselor(1)

    assert len(list(compute_available_slots(scheduling_db, 1, date(2020, 1, 6)))) == 4


def test_unknown_counselor_raises_not_found(scheduling_db) -> None:
    with pytest.raises(errors.NotFound):
        compute_available_slots(scheduling_db, 999, MONDAY)


def test_out_of_range_duration_is_rejected(scheduling_db, add_counselor) -> None:
    add_counselor(1)

    with pytest.raises(errors.ValidationError):
        compute_available_slots(scheduling_db, 1, MONDAY, 200)
