"""
Availability resolution across service, brand, and staff calendars.

A candidate slot is available when the service calendar and the brand
calendar are clear and at least one staff calendar is clear for the exact
interval. Calendars are queried concurrently through the provider gateway,
which bounds in-flight calls. Any provider failure for a calendar counts as
busy for that slot, so an unreachable calendar never produces a bookable
slot.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, TypedDict

from brand_booking.config import SchedulingConfig
from brand_booking.directory import Directory
from brand_booking.errors import ProviderError
from brand_booking.providers.gateway import ProviderGateway
from brand_booking.schemas.availability_schema import TimeSlot
from brand_booking.schemas.directory_schema import Brand, Employee, Service
from brand_booking.scheduling.slot_generator import (
    PatternHours,
    WeeklyHours,
    WorkingHours,
    default_hours,
    generate_slots,
    local_day,
    start_of_next_local_day,
)
from brand_booking.utils import to_utc

logger = logging.getLogger(__name__)

# Candidate slots evaluated together; the gateway semaphore bounds the calls
SLOT_BATCH_SIZE = 24


class DateAvailability(TypedDict):
    """Summary of availability for a single local date."""

    date: str
    day_name: str
    slot_count: int
    slots: list[TimeSlot]


class AvailabilitySummary(TypedDict):
    """Result from summarize()."""

    total_slots: int
    next_available: Optional[TimeSlot]
    dates: list[DateAvailability]


@dataclass
class IntervalCheck:
    """Outcome of checking one exact interval against every calendar."""

    service_free: bool
    brand_free: bool
    free_staff: list[str] = field(default_factory=list)

    @property
    def calendars_free(self) -> bool:
        return self.service_free and self.brand_free

    @property
    def available(self) -> bool:
        return self.calendars_free and bool(self.free_staff)


@dataclass
class _Query:
    """Everything resolved once per request before calendars are checked."""

    brand: Brand
    service: Service
    staff: list[Employee]
    hours: WorkingHours
    tz: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityResolver:
    """Computes bookable slots for a brand, service, and optional employee."""

    def __init__(
        self,
        directory: Directory,
        gateway: ProviderGateway,
        config: Optional[SchedulingConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._directory = directory
        self._gateway = gateway
        self._config = config or SchedulingConfig()
        self._clock = clock

    @property
    def config(self) -> SchedulingConfig:
        return self._config

    def now(self) -> datetime:
        return to_utc(self._clock())

    def timezone_for(self, brand: Brand) -> str:
        return brand.timezone or self._config.business_timezone

    def excludes_today(self, brand: Brand) -> bool:
        if brand.exclude_today is not None:
            return brand.exclude_today
        return self._config.exclude_today

    def staff_for(self, brand_id: str, employee_id: Optional[str]) -> list[Employee]:
        """Return the staff to check: one employee, or the whole roster."""
        if employee_id:
            return [self._directory.get_brand_employee(brand_id, employee_id)]
        return self._directory.get_employees_for_brand(brand_id)

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    async def resolve(
        self,
        brand_id: str,
        service_id: str,
        employee_id: Optional[str] = None,
        *,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[TimeSlot]:
        """Return available slots in ``[start, end)`` sorted by start.

        Raises:
            NotFoundError / AssociationError: bad brand, service, or employee.
            ProviderError: the working-hours lookup failed.
        """
        start, end = to_utc(start), to_utc(end)
        query = await self._prepare(brand_id, service_id, employee_id, start, end)
        if not query.staff:
            logger.warning("Brand %s has no staff on its roster", brand_id)
            return []

        candidates = self._candidates(query, start, end, now)
        slots: list[TimeSlot] = []
        for batch in _batched(candidates, SLOT_BATCH_SIZE):
            slots.extend(await self._evaluate(query, batch))
            if limit is not None and len(slots) >= limit:
                break

        slots.sort(key=lambda slot: slot.start)
        if limit is not None:
            slots = slots[:limit]
        logger.info(
            "Resolved %d slots for %s/%s (employee=%s) in %s - %s",
            len(slots), brand_id, service_id, employee_id or "any",
            start.isoformat(), end.isoformat(),
        )
        return slots

    async def check_interval(
        self,
        brand: Brand,
        staff: list[Employee],
        start: datetime,
        end: datetime,
    ) -> IntervalCheck:
        """Check one exact interval against service, brand, and staff calendars.

        ``free_staff`` keeps the order of ``staff``.
        """
        start, end = to_utc(start), to_utc(end)
        marker = brand.availability_marker if brand.hours_source == "pattern" else None

        calendars: dict[str, Optional[str]] = {brand.service_calendar_id: marker}
        calendars.setdefault(brand.calendar_id, marker)
        for employee in staff:
            calendars.setdefault(employee.primary_calendar_id, None)

        ids = list(calendars)
        results = await asyncio.gather(
            *(self._is_free(cal_id, start, end, calendars[cal_id]) for cal_id in ids)
        )
        free = dict(zip(ids, results))
        return IntervalCheck(
            service_free=free[brand.service_calendar_id],
            brand_free=free[brand.calendar_id],
            free_staff=[emp.id for emp in staff if free[emp.primary_calendar_id]],
        )

    async def next_available(
        self,
        brand_id: str,
        service_id: str,
        employee_id: Optional[str] = None,
        now: Optional[datetime] = None,
        days: Optional[int] = None,
    ) -> Optional[TimeSlot]:
        """Return the first available slot within the look-ahead window."""
        now = to_utc(now) if now is not None else self.now()
        slots = await self.resolve(
            brand_id,
            service_id,
            employee_id,
            start=now,
            end=now + timedelta(days=days or self._config.lookahead_days),
            now=now,
            limit=1,
        )
        return slots[0] if slots else None

    async def summarize(
        self,
        brand_id: str,
        service_id: str,
        employee_id: Optional[str] = None,
        *,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> AvailabilitySummary:
        """Group available slots by brand-local date."""
        slots = await self.resolve(
            brand_id, service_id, employee_id, start=start, end=end, now=now
        )
        tz = self.timezone_for(self._directory.get_brand(brand_id))

        dates: dict[str, DateAvailability] = {}
        for slot in slots:
            day = local_day(slot.start, tz)
            entry = dates.setdefault(day.isoformat(), {
                "date": day.isoformat(),
                "day_name": day.strftime("%A"),
                "slot_count": 0,
                "slots": [],
            })
            entry["slot_count"] += 1
            entry["slots"].append(slot)

        return {
            "total_slots": len(slots),
            "next_available": slots[0] if slots else None,
            "dates": list(dates.values()),
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _prepare(
        self,
        brand_id: str,
        service_id: str,
        employee_id: Optional[str],
        start: datetime,
        end: datetime,
    ) -> _Query:
        brand = self._directory.get_brand(brand_id)
        service = self._directory.get_service(brand_id, service_id)
        staff = self.staff_for(brand_id, employee_id)
        tz = self.timezone_for(brand)
        hours = await self.working_hours(brand, start, end)
        return _Query(brand=brand, service=service, staff=staff, hours=hours, tz=tz)

    async def working_hours(self, brand: Brand, start: datetime, end: datetime) -> WorkingHours:
        """Resolve the working-hours source configured for ``brand``."""
        fallback = default_hours(self._config.default_day_start, self._config.default_day_end)

        if brand.hours_source == "fixed":
            return fallback

        if brand.hours_source == "pattern":
            entries = await self._gateway.get_recurring_availability_pattern(
                brand.calendar_id, brand.availability_marker, start, end,
                self.timezone_for(brand),
            )
            logger.debug("Brand %s: %d availability pattern entries", brand.id, len(entries))
            return PatternHours(entries)

        if not brand.business_id:
            logger.debug("Brand %s has no booking business; using fixed hours", brand.id)
            return fallback
        weekly = WeeklyHours.from_day_hours(
            await self._gateway.get_business_hours(brand.business_id)
        )
        if not weekly:
            logger.info("No business hours for %s; using fixed hours", brand.business_id)
            return fallback
        return weekly

    def _candidates(
        self,
        query: _Query,
        start: datetime,
        end: datetime,
        now: Optional[datetime],
    ) -> Iterable[TimeSlot]:
        now = to_utc(now) if now is not None else self.now()
        cutoff = now
        strict = True
        if self.excludes_today(query.brand):
            cutoff = start_of_next_local_day(now, query.tz)
            strict = False

        for slot in generate_slots(
            start, end, query.service.duration_minutes, query.hours,
            step_minutes=self._config.slot_step_minutes, tz=query.tz,
        ):
            if slot.start > cutoff or (not strict and slot.start == cutoff):
                yield slot

    async def _evaluate(self, query: _Query, batch: list[TimeSlot]) -> list[TimeSlot]:
        checks = await asyncio.gather(
            *(self.check_interval(query.brand, query.staff, slot.start, slot.end) for slot in batch)
        )
        return [
            slot.with_staff(check.free_staff)
            for slot, check in zip(batch, checks)
            if check.available
        ]

    async def _is_free(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        ignore_marker: Optional[str],
    ) -> bool:
        try:
            return not await self._gateway.has_conflict(calendar_id, start, end, ignore_marker)
        except ProviderError as exc:
            logger.warning(
                "Treating %s as busy for %s: %s", calendar_id, start.isoformat(), exc
            )
            return False


def _batched(items: Iterable[TimeSlot], size: int) -> Iterable[list[TimeSlot]]:
    batch: list[TimeSlot] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
