"""Availability models: working-hours windows, provider events, and slots."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from brand_booking.utils import to_utc

WEEKDAYS: tuple[str, ...] = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)


def _normalize_weekday(value: str) -> str:
    day = value.strip().lower()
    if day not in WEEKDAYS:
        raise ValueError(f"Unknown day of week: {value!r}")
    return day


class TimeWindow(BaseModel):
    """A wall-clock interval within one local day."""

    start_time: time
    end_time: time

    @model_validator(mode="after")
    def _ordered(self) -> "TimeWindow":
        if self.end_time <= self.start_time:
            raise ValueError(
                f"window end {self.end_time} must be after start {self.start_time}"
            )
        return self


class DayHours(BaseModel):
    """Business hours for one weekday: zero or more sub-windows."""

    day_of_week: str
    windows: list[TimeWindow]

    @field_validator("day_of_week")
    @classmethod
    def _weekday(cls, value: str) -> str:
        return _normalize_weekday(value)


class AvailabilityPatternEntry(BaseModel):
    """A recurring or one-off availability window mined from a shared calendar.

    Exactly one of ``day_of_week`` (recurring) or ``on_date`` (single occurrence)
    is set. Times are local to the brand's timezone.
    """

    day_of_week: Optional[str] = None
    on_date: Optional[date] = None
    start_time: time
    end_time: time

    @field_validator("day_of_week")
    @classmethod
    def _weekday(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_weekday(value) if value is not None else None

    @model_validator(mode="after")
    def _one_key(self) -> "AvailabilityPatternEntry":
        if (self.day_of_week is None) == (self.on_date is None):
            raise ValueError("exactly one of day_of_week or on_date must be set")
        if self.end_time <= self.start_time:
            raise ValueError("pattern end_time must be after start_time")
        return self


class CalendarEvent(BaseModel):
    """A provider event normalized to UTC."""

    id: str
    subject: str = ""
    start: datetime
    end: datetime
    show_as: str = "busy"
    event_type: Optional[str] = None
    is_cancelled: bool = False
    series_master_id: Optional[str] = None
    recurrence_days: list[str] = Field(default_factory=list)

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


@dataclass(frozen=True)
class TimeSlot:
    """A candidate or confirmed window; ``staff_ids`` lists who is free for it."""

    start: datetime
    end: datetime
    staff_ids: tuple[str, ...] = field(default=())

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def with_staff(self, staff_ids: list[str]) -> "TimeSlot":
        return TimeSlot(self.start, self.end, tuple(staff_ids))

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration": self.duration_minutes,
            "staff_ids": list(self.staff_ids),
        }
