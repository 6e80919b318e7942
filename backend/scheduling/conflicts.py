"""Half-open interval overlap checks between candidate times and bookings.

Callers pass only bookings that still hold their time, i.e. with status
outside CANCELLED and NO_SHOW. Nothing here looks at status.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from backend.scheduling.availability import SlotCandidate


@dataclass(frozen=True)
class BookedInterval:
    start: datetime
    duration_minutes: int

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)


def intervals_overlap(
    first_start: datetime,
    first_minutes: int,
    second_start: datetime,
    second_minutes: int,
) -> bool:
    first_end = first_start + timedelta(minutes=first_minutes)
    second_end = second_start + timedelta(minutes=second_minutes)
    return first_start < second_end and second_start < first_end


def is_overlapping(
    candidate_start: datetime,
    candidate_duration: int,
    existing: Iterable[BookedInterval],
) -> bool:
    return any(
        intervals_overlap(candidate_start, candidate_duration, booked.start, booked.duration_minutes)
        for booked in existing
    )


def filter_available_slots(
    slots: Iterable[SlotCandidate],
    target_date: date,
    existing: Iterable[BookedInterval],
) -> list[SlotCandidate]:
    booked = list(existing)
    return [
        slot
        for slot in slots
        if not is_overlapping(slot.start_on(target_date), slot.duration_minutes, booked)
    ]
