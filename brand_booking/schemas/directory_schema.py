"""Tenant directory models: brands, the services they offer, and staff."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from brand_booking.utils import parse_iso_duration

HoursSource = Literal["business_hours", "fixed", "pattern"]


class Service(BaseModel):
    """A bookable offering with a fixed duration.

    ``duration`` may be given either as minutes or as an ISO-8601 duration
    string (``PT1H30M``), matching what the booking backend returns.
    """

    id: str
    name: str
    description: str = ""
    duration_minutes: int

    @model_validator(mode="before")
    @classmethod
    def _accept_duration_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "duration_minutes" not in data and "duration" in data:
            data = dict(data)
            raw = data.pop("duration")
            data["duration_minutes"] = parse_iso_duration(raw) if isinstance(raw, str) else raw
        return data

    @field_validator("duration_minutes")
    @classmethod
    def _positive_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"duration must be > 0 minutes, got {value}")
        return value


class Brand(BaseModel):
    """A tenant / business unit and the calendars that describe it."""

    id: str
    name: str
    domain: str = ""
    calendar_id: str
    business_id: Optional[str] = None
    availability_marker: str = "Available"
    hours_source: HoursSource = "business_hours"
    timezone: Optional[str] = None
    exclude_today: Optional[bool] = None
    mirror_to_brand_calendar: bool = False
    mirror_to_staff_calendar: bool = False
    services: list[Service] = Field(default_factory=list)

    @property
    def service_calendar_id(self) -> str:
        """Calendar that defines when services may be booked."""
        return self.business_id or self.calendar_id

    @model_validator(mode="after")
    def _unique_service_ids(self) -> "Brand":
        ids = [svc.id for svc in self.services]
        duplicates = sorted({sid for sid in ids if ids.count(sid) > 1})
        if duplicates:
            raise ValueError(f"Brand '{self.id}' lists duplicate service ids: {duplicates}")
        return self


class Employee(BaseModel):
    """A staff member who can be assigned to bookings."""

    id: str
    name: str
    email: str
    primary_calendar_id: str
    brands: list[str]
    staff_member_id: Optional[str] = None

    @field_validator("brands")
    @classmethod
    def _at_least_one_brand(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("employee must belong to at least one brand")
        return value

    def works_for(self, brand_id: str) -> bool:
        return brand_id in self.brands


class DirectorySettings(BaseModel):
    """Root of the settings file loaded once at process start."""

    brands: list[Brand]
    employees: list[Employee] = Field(default_factory=list)
