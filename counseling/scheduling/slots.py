"""Slot calculator.

A slot is a candidate booking interval: a counselor's weekly window walked in
fixed steps, minus everything already booked on that date.
"""

import heapq
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.orm import Session

from counseling.core import config, errors
from counseling.scheduling import availability_store, booking_ledger, timeutils


@dataclass(frozen=True)
class Slot:
    start: time
    end: time

    @property
    def start_label(self) -> str:
        return timeutils.format_hhmm(self.start)

    @property
    def end_label(self) -> str:
        return timeutils.format_hhmm(self.end)


class SlotSequence:
    """Lazy, restartable sequence of free slots ordered by start time.

    ``windows`` are ``(start_minute, end_minute)`` pairs in declaration order;
    ``busy`` are occupied ``(start_minute, end_minute)`` pairs relative to the
    same midnight. Every ``iter()`` walks the windows again from scratch.
    """

    def __init__(
        self,
        windows: list[tuple[int, int]],
        busy: list[tuple[int, int]],
        duration_minutes: int,
        granularity_minutes: int = config.SLOT_GRANULARITY_MINUTES,
    ):
        if duration_minutes <= 0 or granularity_minutes <= 0:
            raise errors.ValidationError('Slot duration and granularity must be positive.')
        self.windows = list(windows)
        self.busy = sorted(busy)
        self.duration_minutes = duration_minutes
        self.granularity_minutes = granularity_minutes

    def _is_free(self, start: int, end: int) -> bool:
        for busy_start, busy_end in self.busy:
            if busy_start >= end:
                break
            if timeutils.intervals_overlap(start, end, busy_start, busy_end):
                return False
        return True

    def _window_slots(self, window_start: int, window_end: int):
        current = window_start
        while current + self.duration_minutes <= window_end:
            end = current + self.duration_minutes
            if self._is_free(current, end):
                yield Slot(timeutils.from_minutes(current), timeutils.from_minutes(end))
            current += self.granularity_minutes

    def __iter__(self):
        # heapq.merge is stable, so equal starts keep window declaration order.
        return heapq.merge(
            *(self._window_slots(start, end) for start, end in self.windows),
            key=lambda slot: slot.start,
        )

    def __contains__(self, start: time) -> bool:
        return any(slot.start == start for slot in self)


def validate_duration(duration_minutes: int) -> None:
    if not config.MIN_APPOINTMENT_MINUTES <= duration_minutes <= config.MAX_APPOINTMENT_MINUTES:
        raise errors.ValidationError(
            f'Duration must be between {config.MIN_APPOINTMENT_MINUTES} '
            f'and {config.MAX_APPOINTMENT_MINUTES} minutes.'
        )


def build_slot_sequence(
    windows,
    snapshot: booking_ledger.LedgerSnapshot,
    duration_minutes: int,
) -> SlotSequence:
    return SlotSequence(
        windows=[
            (timeutils.to_minutes(window.start_time), timeutils.to_minutes(window.end_time))
            for window in windows
        ],
        busy=snapshot.busy_intervals(),
        duration_minutes=duration_minutes,
    )


def compute_available_slots(
    db: Session,
    counselor_id: int,
    on_date: date,
    duration_minutes: int | None = None,
) -> SlotSequence:
    """Free slots for ``counselor_id`` on ``on_date``. Past dates are allowed."""
    if duration_minutes is not None:
        validate_duration(duration_minutes)
    duration = duration_minutes or config.SLOT_GRANULARITY_MINUTES

    counselor = availability_store.get_counselor(db, counselor_id)
    if not counselor.is_accepting_bookings:
        return SlotSequence([], [], duration)

    windows = availability_store.windows_for_date(db, counselor_id, on_date)
    if not windows:
        return SlotSequence([], [], duration)

    snapshot = booking_ledger.LedgerSnapshot(
        counselor_id=counselor_id,
        date=on_date,
        appointments=booking_ledger.active_appointments_on(db, counselor_id, on_date),
    )
    return build_slot_sequence(windows, snapshot, duration)
