"""Weekly availability templates and slot generation."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from backend.scheduling.errors import InvalidAvailabilityTemplate

WEEKDAY_NAMES = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
DEFAULT_SLOT_DURATION_MINUTES = 30

_WEEKDAY_LOOKUP = {name.lower(): name for name in WEEKDAY_NAMES}
_WEEKDAY_LOOKUP.update({name[:3].lower(): name for name in WEEKDAY_NAMES})


def normalize_weekday(value: str) -> str:
    """Map 'mon', 'Mon' or 'MONDAY' to the canonical 'Monday'."""
    key = value.strip().lower()
    if key not in _WEEKDAY_LOOKUP:
        raise InvalidAvailabilityTemplate(f'Unknown weekday: {value!r}.')
    return _WEEKDAY_LOOKUP[key]


def parse_time_of_day(value: str | time) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)

    try:
        hour_text, minute_text = value.strip().split(':')
        return time(int(hour_text), int(minute_text))
    except ValueError as exc:
        raise InvalidAvailabilityTemplate(f'Invalid time of day: {value!r}. Use HH:MM.') from exc


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True)
class AvailabilityTemplate:
    """A doctor's recurring weekly working window."""

    work_days: frozenset[str]
    day_start: time
    day_end: time
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES

    @classmethod
    def from_values(
        cls,
        work_days,
        day_start: str | time,
        day_end: str | time,
        slot_duration_minutes: int | None = None,
    ) -> 'AvailabilityTemplate':
        return cls(
            work_days=frozenset(normalize_weekday(day) for day in work_days),
            day_start=parse_time_of_day(day_start),
            day_end=parse_time_of_day(day_end),
            slot_duration_minutes=(
                DEFAULT_SLOT_DURATION_MINUTES if slot_duration_minutes is None else slot_duration_minutes
            ),
        )

    @property
    def is_valid(self) -> bool:
        return self.day_start < self.day_end and self.slot_duration_minutes > 0

    def works_on(self, target_date: date) -> bool:
        return WEEKDAY_NAMES[target_date.weekday()] in self.work_days


@dataclass(frozen=True)
class SlotCandidate:
    start_time: time
    duration_minutes: int

    def start_on(self, target_date: date) -> datetime:
        return datetime.combine(target_date, self.start_time)

    def end_on(self, target_date: date) -> datetime:
        return self.start_on(target_date) + timedelta(minutes=self.duration_minutes)


def validate_availability_template(template: AvailabilityTemplate) -> AvailabilityTemplate:
    """Raise InvalidAvailabilityTemplate unless the template can produce slots.

    Called when a profile is edited. Slot generation itself never raises.
    """
    if template.slot_duration_minutes <= 0:
        raise InvalidAvailabilityTemplate('Slot duration must be a positive number of minutes.')

    if template.day_start >= template.day_end:
        raise InvalidAvailabilityTemplate('Day start must be earlier than day end.')

    window = minutes_since_midnight(template.day_end) - minutes_since_midnight(template.day_start)
    if template.slot_duration_minutes > window:
        raise InvalidAvailabilityTemplate('Slot duration does not fit inside the working day.')

    return template


def generate_slots(template: AvailabilityTemplate, target_date: date) -> list[SlotCandidate]:
    if not template.is_valid or not template.works_on(target_date):
        return []

    step = template.slot_duration_minutes
    cursor = minutes_since_midnight(template.day_start)
    end = minutes_since_midnight(template.day_end)

    slots: list[SlotCandidate] = []
    while cursor + step <= end:
        slots.append(SlotCandidate(start_time=time_from_minutes(cursor), duration_minutes=step))
        cursor += step

    return slots
