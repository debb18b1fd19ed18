"""
Provider gateway: throttling, timeouts, and retries around a calendar backend.

The calendar backend is a rate-limited external dependency. Every call
made by the core goes through one gateway so that:

- at most ``max_concurrency`` calls are in flight at once,
- each call is bounded by ``timeout_seconds``,
- idempotent reads are retried with exponential backoff,
- writes are attempted exactly once,
- every failure surfaces as ``ProviderError``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from brand_booking.config import ProviderConfig
from brand_booking.errors import ProviderError
from brand_booking.providers.base import AppointmentSpec, CalendarProvider, EventSpec
from brand_booking.schemas.availability_schema import (
    AvailabilityPatternEntry,
    CalendarEvent,
    DayHours,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderGateway:
    """Bounded, timed access to a ``CalendarProvider``."""

    def __init__(
        self,
        provider: CalendarProvider,
        config: Optional[ProviderConfig] = None,
        tentative_blocks: bool = True,
    ) -> None:
        self._provider = provider
        self._config = config or ProviderConfig()
        self._semaphore = asyncio.Semaphore(self._config.max_concurrency)
        self.tentative_blocks = tentative_blocks

    @property
    def provider(self) -> CalendarProvider:
        return self._provider

    # ------------------------------------------------------------------ #
    # Reads (retried)
    # ------------------------------------------------------------------ #

    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        return await self._read(
            "list_events", lambda: self._provider.list_events(calendar_id, start, end)
        )

    async def has_conflict(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        ignore_marker: Optional[str] = None,
    ) -> bool:
        return await self._read(
            "get_busy_status",
            lambda: self._provider.get_busy_status(
                calendar_id, start, end, self.tentative_blocks, ignore_marker
            ),
        )

    async def get_business_hours(self, business_id: str) -> list[DayHours]:
        return await self._read(
            "get_business_hours", lambda: self._provider.get_business_hours(business_id)
        )

    async def get_recurring_availability_pattern(
        self,
        calendar_id: str,
        marker: str,
        start: datetime,
        end: datetime,
        tz: str = "UTC",
    ) -> list[AvailabilityPatternEntry]:
        return await self._read(
            "get_recurring_availability_pattern",
            lambda: self._provider.get_recurring_availability_pattern(
                calendar_id, marker, start, end, tz
            ),
        )

    # ------------------------------------------------------------------ #
    # Writes (never retried)
    # ------------------------------------------------------------------ #

    async def create_event(self, calendar_id: str, spec: EventSpec) -> str:
        return await self._call("create_event", self._provider.create_event(calendar_id, spec))

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._call("delete_event", self._provider.delete_event(calendar_id, event_id))

    async def create_appointment(self, business_id: str, spec: AppointmentSpec) -> str:
        return await self._call(
            "create_appointment", self._provider.create_appointment(business_id, spec)
        )

    async def cancel_appointment(
        self, business_id: str, appointment_id: str, message: str
    ) -> None:
        await self._call(
            "cancel_appointment",
            self._provider.cancel_appointment(business_id, appointment_id, message),
        )

    async def close(self) -> None:
        await self._provider.close()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _read(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        attempts = self._config.read_retries + 1
        attempt = 0
        while True:
            try:
                return await self._call(operation, factory())
            except ProviderError:
                attempt += 1
                if attempt >= attempts:
                    raise
            delay = self._config.retry_backoff_seconds * (2 ** (attempt - 1))
            logger.debug(
                "%s failed (attempt %d/%d), retrying in %.2fs",
                operation, attempt, attempts, delay,
            )
            await asyncio.sleep(delay)

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        async with self._semaphore:
            try:
                return await asyncio.wait_for(awaitable, timeout=self._config.timeout_seconds)
            except ProviderError:
                raise
            except asyncio.TimeoutError:
                logger.warning(
                    "%s timed out after %.1fs", operation, self._config.timeout_seconds
                )
                raise ProviderError(
                    f"{operation} timed out after {self._config.timeout_seconds}s",
                    operation=operation,
                    timed_out=True,
                ) from None
            except Exception as exc:
                logger.warning("%s failed: %s", operation, exc)
                raise ProviderError(f"{operation} failed: {exc}", operation=operation) from exc
