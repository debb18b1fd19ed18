"""
Candidate slot generation from working-hours policies.

Turns a UTC range, a service duration, and a working-hours source into an
ordered, lazy, restartable sequence of fixed-length slots. Pure: no I/O
and no reference to the current time.

Local day and weekday boundaries are computed in the business timezone
with ``zoneinfo``; every slot is yielded as a pair of UTC instants.

Usage:
    hours = FixedDailyHours(time(9), time(17))
    for slot in generate_slots(start, end, 60, hours, step_minutes=30, tz="Europe/Copenhagen"):
        ...
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo

from brand_booking.schemas.availability_schema import (
    WEEKDAYS,
    AvailabilityPatternEntry,
    DayHours,
    TimeSlot,
)
from brand_booking.utils import to_utc

DEFAULT_STEP_MINUTES = 30

Window = tuple[time, time]


class WorkingHours(ABC):
    """Source of local wall-clock windows for a given calendar day."""

    @abstractmethod
    def windows_for(self, day: date) -> list[Window]:
        """Return the sub-windows open on ``day``, sorted by start."""


class FixedDailyHours(WorkingHours):
    """The same window every day, e.g. 09:00-17:00."""

    def __init__(self, start_time: time, end_time: time) -> None:
        if end_time <= start_time:
            raise ValueError(f"end_time {end_time} must be after start_time {start_time}")
        self.start_time = start_time
        self.end_time = end_time

    def windows_for(self, day: date) -> list[Window]:
        return [(self.start_time, self.end_time)]


class WeeklyHours(WorkingHours):
    """Per-weekday table of one or more sub-windows (business hours)."""

    def __init__(self, table: dict[str, list[Window]]) -> None:
        self._table = {day.lower(): sorted(windows) for day, windows in table.items()}

    @classmethod
    def from_day_hours(cls, hours: Iterable[DayHours]) -> "WeeklyHours":
        table: dict[str, list[Window]] = {}
        for day in hours:
            table.setdefault(day.day_of_week, []).extend(
                (w.start_time, w.end_time) for w in day.windows
            )
        return cls(table)

    def windows_for(self, day: date) -> list[Window]:
        return list(self._table.get(WEEKDAYS[day.weekday()], []))

    def __bool__(self) -> bool:
        return any(self._table.values())


class PatternHours(WorkingHours):
    """Windows mined from recurring availability events.

    Weekday entries apply every matching week; dated entries apply to that
    date only. Both kinds are merged for a day.
    """

    def __init__(self, entries: Iterable[AvailabilityPatternEntry]) -> None:
        self._weekly: dict[str, list[Window]] = {}
        self._dated: dict[date, list[Window]] = {}
        for entry in entries:
            window = (entry.start_time, entry.end_time)
            if entry.on_date is not None:
                self._dated.setdefault(entry.on_date, []).append(window)
            else:
                self._weekly.setdefault(entry.day_of_week, []).append(window)

    def windows_for(self, day: date) -> list[Window]:
        windows = self._weekly.get(WEEKDAYS[day.weekday()], []) + self._dated.get(day, [])
        return sorted(set(windows))

    def __bool__(self) -> bool:
        return bool(self._weekly or self._dated)


class SlotSequence:
    """Restartable iterable of candidate slots; each ``iter()`` starts over."""

    def __init__(
        self,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        hours: WorkingHours,
        step_minutes: int = DEFAULT_STEP_MINUTES,
        tz: str = "UTC",
    ) -> None:
        if duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be > 0, got {duration_minutes}")
        if step_minutes <= 0:
            raise ValueError(f"step_minutes must be > 0, got {step_minutes}")
        self.start = to_utc(start)
        self.end = to_utc(end)
        self.duration = timedelta(minutes=duration_minutes)
        self.step = timedelta(minutes=step_minutes)
        self.hours = hours
        self.zone = ZoneInfo(tz)

    def __iter__(self) -> Iterator[TimeSlot]:
        return self._generate()

    def _generate(self) -> Iterator[TimeSlot]:
        if self.end <= self.start:
            return
        day = self.start.astimezone(self.zone).date()
        last_day = self.end.astimezone(self.zone).date()
        while day <= last_day:
            yield from self._slots_for_day(day)
            day += timedelta(days=1)

    def _slots_for_day(self, day: date) -> list[TimeSlot]:
        starts: set[datetime] = set()
        for window_start, window_end in self.hours.windows_for(day):
            opens = self._local_instant(day, window_start)
            closes = self._local_instant(day, window_end)
            slot_start = opens
            while slot_start + self.duration <= closes:
                slot_end = slot_start + self.duration
                if slot_start >= self.start and slot_end <= self.end:
                    starts.add(slot_start)
                slot_start += self.step
        return [TimeSlot(start, start + self.duration) for start in sorted(starts)]

    def _local_instant(self, day: date, wall: time) -> datetime:
        # time.max marks a window that runs to midnight
        if wall == time.max:
            day, wall = day + timedelta(days=1), time(0, 0)
        return datetime.combine(day, wall, tzinfo=self.zone).astimezone(timezone.utc)


def generate_slots(
    start: datetime,
    end: datetime,
    duration_minutes: int,
    hours: WorkingHours,
    step_minutes: int = DEFAULT_STEP_MINUTES,
    tz: str = "UTC",
) -> SlotSequence:
    """Return the candidate slots for ``[start, end)``.

    Every slot lies entirely inside one working-hours sub-window of its
    local day. Starts advance by ``step_minutes`` from each window opening,
    so a 60-minute service may start at :00 and :30. A trailing remainder
    shorter than the duration is discarded. Only slots fully inside the
    range are produced; ``end <= start`` produces nothing.
    """
    return SlotSequence(start, end, duration_minutes, hours, step_minutes, tz)


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` string from configuration."""
    hh, mm = value.split(":")
    return time(int(hh), int(mm))


def default_hours(day_start: str, day_end: str) -> FixedDailyHours:
    """Fixed daily window built from configuration strings."""
    return FixedDailyHours(parse_clock(day_start), parse_clock(day_end))


def local_day(instant: datetime, tz: str) -> date:
    """Calendar day of ``instant`` in ``tz``."""
    return to_utc(instant).astimezone(ZoneInfo(tz)).date()


def start_of_next_local_day(instant: datetime, tz: str) -> datetime:
    """UTC instant of the next local midnight after ``instant``."""
    zone = ZoneInfo(tz)
    tomorrow = local_day(instant, tz) + timedelta(days=1)
    return datetime.combine(tomorrow, time(0, 0), tzinfo=zone).astimezone(timezone.utc)
