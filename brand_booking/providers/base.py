"""Abstract base class for calendar provider implementations.

The booking core depends only on this interface. Everything specific to a
backend (request shaping, paging, subject-marker conventions) stays in the
concrete provider module.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from brand_booking.schemas.availability_schema import (
    WEEKDAYS,
    AvailabilityPatternEntry,
    CalendarEvent,
    DayHours,
)

logger = logging.getLogger(__name__)

# showAs values that never block a slot
NON_BLOCKING_STATUSES = frozenset({"free"})


@dataclass
class EventSpec:
    """A calendar event to create in a mailbox calendar."""

    subject: str
    start: datetime
    end: datetime
    body: str = ""
    attendees: list[tuple[str, str]] = field(default_factory=list)
    show_as: str = "busy"
    location: Optional[str] = None


@dataclass
class AppointmentSpec:
    """An appointment to create in a booking business."""

    service_id: str
    start: datetime
    end: datetime
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    staff_member_ids: list[str] = field(default_factory=list)
    notes: Optional[str] = None


def is_blocking(event: CalendarEvent, tentative_blocks: bool = True) -> bool:
    """Return True when an event makes its interval unavailable.

    ``free`` never blocks. ``tentative`` blocks unless the policy says
    otherwise. Every other status (busy, oof, workingElsewhere, unknown)
    blocks. Cancelled events never block.
    """
    if event.is_cancelled:
        return False
    status = (event.show_as or "").strip()
    if status in NON_BLOCKING_STATUSES:
        return False
    if status == "tentative":
        return tentative_blocks
    return True


def is_availability_marker(event: CalendarEvent, marker: Optional[str]) -> bool:
    """Return True for a marker event that opens hours rather than booking them.

    Only non-busy events qualify, so a booking whose subject happens to
    contain the marker text still blocks.
    """
    return bool(marker) and marker in (event.subject or "") and event.show_as != "busy"


def mine_availability_pattern(
    events: list[CalendarEvent], marker: str, tz: str = "UTC"
) -> list[AvailabilityPatternEntry]:
    """Turn marker-subject events into local availability windows.

    Series masters with a weekly or daily recurrence produce one entry per
    weekday; any other matching event produces a date-specific entry.
    Events whose status is ``busy`` or that span more than one local day are
    skipped.
    """
    zone = ZoneInfo(tz)
    entries: list[AvailabilityPatternEntry] = []
    seen: set[tuple] = set()
    seen_masters: set[str] = set()

    for event in events:
        if not is_availability_marker(event, marker) or event.is_cancelled:
            continue

        local_start = event.start.astimezone(zone)
        local_end = event.end.astimezone(zone)
        end_time = local_end.time()
        if local_end.date() != local_start.date():
            if local_end.date() == local_start.date() + timedelta(days=1) and end_time == time(0, 0):
                end_time = time.max
            else:
                logger.debug("Skipping multi-day availability event %s", event.id)
                continue
        if end_time <= local_start.time():
            continue

        if event.event_type == "seriesMaster" and event.recurrence_days:
            if event.id in seen_masters:
                continue
            seen_masters.add(event.id)
            for day in event.recurrence_days:
                key = (day, None, local_start.time(), end_time)
                if day in WEEKDAYS and key not in seen:
                    seen.add(key)
                    entries.append(AvailabilityPatternEntry(
                        day_of_week=day, start_time=local_start.time(), end_time=end_time,
                    ))
            continue

        key = (None, local_start.date(), local_start.time(), end_time)
        if key not in seen:
            seen.add(key)
            entries.append(AvailabilityPatternEntry(
                on_date=local_start.date(), start_time=local_start.time(), end_time=end_time,
            ))

    return entries


class CalendarProvider(ABC):
    """Abstract base class for calendar backends.

    All timestamps crossing this boundary are aware UTC datetimes.
    """

    @abstractmethod
    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """Return events in ``calendar_id`` overlapping ``[start, end)``."""

    async def get_busy_status(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        tentative_blocks: bool = True,
        ignore_marker: Optional[str] = None,
    ) -> bool:
        """Return True when any overlapping event blocks the interval.

        Non-busy events whose subject carries ``ignore_marker`` are
        availability markers rather than bookings and never block.
        """
        events = await self.list_events(calendar_id, start, end)
        return any(
            is_blocking(event, tentative_blocks)
            for event in events
            if event.overlaps(start, end)
            and not is_availability_marker(event, ignore_marker)
        )

    @abstractmethod
    async def get_business_hours(self, business_id: str) -> list[DayHours]:
        """Return the business hours table, one entry per open weekday."""

    async def get_recurring_availability_pattern(
        self,
        calendar_id: str,
        marker: str,
        start: datetime,
        end: datetime,
        tz: str = "UTC",
    ) -> list[AvailabilityPatternEntry]:
        """Return availability windows mined from marker-subject events."""
        events = await self.list_events(calendar_id, start, end)
        return mine_availability_pattern(events, marker, tz)

    @abstractmethod
    async def create_event(self, calendar_id: str, spec: EventSpec) -> str:
        """Create an event and return its provider id."""

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event by provider id."""

    @abstractmethod
    async def create_appointment(self, business_id: str, spec: AppointmentSpec) -> str:
        """Create a booking-business appointment and return its id."""

    @abstractmethod
    async def cancel_appointment(
        self, business_id: str, appointment_id: str, message: str
    ) -> None:
        """Cancel a booking-business appointment."""

    async def close(self) -> None:
        """Clean up resources (HTTP clients, etc.)."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider identifier (e.g., 'memory', 'microsoft-graph')."""
