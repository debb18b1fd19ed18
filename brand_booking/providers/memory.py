"""
In-memory calendar backend.

Used by the test suite and the offline CLI demo. In production the Graph
provider takes its place; this one keeps the same semantics (appointments
occupy the business calendar, events occupy their mailbox) without any
network calls, and lets tests inject read/write failures and latency.
"""

import asyncio
import itertools
import logging
from datetime import datetime
from typing import Optional

from brand_booking.providers.base import AppointmentSpec, CalendarProvider, EventSpec
from brand_booking.schemas.availability_schema import CalendarEvent, DayHours

logger = logging.getLogger(__name__)


class InMemoryCalendarProvider(CalendarProvider):
    """Calendar backend holding events per calendar id in a dict."""

    def __init__(self) -> None:
        self._events: dict[str, list[CalendarEvent]] = {}
        self._business_hours: dict[str, list[DayHours]] = {}
        self._appointments: dict[str, dict[str, AppointmentSpec]] = {}
        self._ids = itertools.count(1)
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.read_delay: dict[str, float] = {}
        self.write_log: list[tuple[str, str, str]] = []
        self.read_count = 0

    @property
    def provider_name(self) -> str:
        return "memory"

    # ------------------------------------------------------------------ #
    # Seeding helpers
    # ------------------------------------------------------------------ #

    def add_event(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        show_as: str = "busy",
        subject: str = "Busy",
        event_type: Optional[str] = None,
        recurrence_days: Optional[list[str]] = None,
    ) -> CalendarEvent:
        event = CalendarEvent(
            id=self._next_id("evt"),
            subject=subject,
            start=start,
            end=end,
            show_as=show_as,
            event_type=event_type,
            recurrence_days=recurrence_days or [],
        )
        self._events.setdefault(calendar_id, []).append(event)
        return event

    def set_business_hours(self, business_id: str, hours: list[DayHours]) -> None:
        self._business_hours[business_id] = list(hours)

    def events_for(self, calendar_id: str) -> list[CalendarEvent]:
        return list(self._events.get(calendar_id, []))

    def appointments_for(self, business_id: str) -> dict[str, AppointmentSpec]:
        return dict(self._appointments.get(business_id, {}))

    # ------------------------------------------------------------------ #
    # CalendarProvider interface
    # ------------------------------------------------------------------ #

    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        self.read_count += 1
        delay = self.read_delay.get(calendar_id)
        if delay:
            await asyncio.sleep(delay)
        if calendar_id in self.fail_reads:
            raise ConnectionError(f"Calendar {calendar_id} unreachable")
        return [
            event for event in self._events.get(calendar_id, [])
            if event.overlaps(start, end)
        ]

    async def get_business_hours(self, business_id: str) -> list[DayHours]:
        if business_id in self.fail_reads:
            raise ConnectionError(f"Business {business_id} unreachable")
        return list(self._business_hours.get(business_id, []))

    async def create_event(self, calendar_id: str, spec: EventSpec) -> str:
        if calendar_id in self.fail_writes:
            raise ConnectionError(f"Write to {calendar_id} rejected")
        event = self.add_event(
            calendar_id, spec.start, spec.end, show_as=spec.show_as, subject=spec.subject
        )
        self.write_log.append(("create_event", calendar_id, event.id))
        logger.debug("Created event %s in %s", event.id, calendar_id)
        return event.id

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        if calendar_id in self.fail_deletes:
            raise ConnectionError(f"Delete in {calendar_id} rejected")
        events = self._events.get(calendar_id, [])
        remaining = [event for event in events if event.id != event_id]
        if len(remaining) == len(events):
            raise KeyError(f"Event {event_id} not found in {calendar_id}")
        self._events[calendar_id] = remaining
        self.write_log.append(("delete_event", calendar_id, event_id))

    async def create_appointment(self, business_id: str, spec: AppointmentSpec) -> str:
        if business_id in self.fail_writes:
            raise ConnectionError(f"Appointment write to {business_id} rejected")
        appointment_id = self._next_id("apt")
        self._appointments.setdefault(business_id, {})[appointment_id] = spec
        # Appointments occupy the business calendar like any other event.
        self._events.setdefault(business_id, []).append(CalendarEvent(
            id=appointment_id,
            subject=f"Appointment - {spec.customer_name}",
            start=spec.start,
            end=spec.end,
            show_as="busy",
        ))
        self.write_log.append(("create_appointment", business_id, appointment_id))
        return appointment_id

    async def cancel_appointment(
        self, business_id: str, appointment_id: str, message: str
    ) -> None:
        if business_id in self.fail_deletes:
            raise ConnectionError(f"Cancel in {business_id} rejected")
        appointments = self._appointments.get(business_id, {})
        if appointment_id not in appointments:
            raise KeyError(f"Appointment {appointment_id} not found in {business_id}")
        del appointments[appointment_id]
        self._events[business_id] = [
            event for event in self._events.get(business_id, [])
            if event.id != appointment_id
        ]
        self.write_log.append(("cancel_appointment", business_id, appointment_id))
        logger.debug("Cancelled appointment %s: %s", appointment_id, message)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"
