"""
Facade over the booking core consumed by the API / CLI layer.

``build_booking_system`` wires the directory, provider gateway, resolver,
orchestrator, store, and notifier from configuration so callers only deal
with ``BookingSystem``.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Union

from brand_booking.booking.orchestrator import BookingOrchestrator
from brand_booking.booking.store import BookingStore, InMemoryBookingStore
from brand_booking.config import AppConfig, settings
from brand_booking.directory import Directory
from brand_booking.notifications import GraphMailNotifier, LoggingNotifier, Notifier
from brand_booking.providers.base import CalendarProvider
from brand_booking.providers.gateway import ProviderGateway
from brand_booking.providers.memory import InMemoryCalendarProvider
from brand_booking.reporting import BookingStats, booking_stats
from brand_booking.scheduling.availability import AvailabilityResolver, AvailabilitySummary
from brand_booking.schemas.availability_schema import TimeSlot
from brand_booking.schemas.booking_schema import Booking, BookingRequest

logger = logging.getLogger(__name__)


class BookingSystem:
    """Single entry point for availability, booking, and admin statistics."""

    def __init__(
        self,
        directory: Directory,
        provider: CalendarProvider,
        config: Optional[AppConfig] = None,
        store: Optional[BookingStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or settings
        self.directory = directory
        self.gateway = ProviderGateway(
            provider,
            self.config.provider,
            tentative_blocks=self.config.scheduling.tentative_blocks,
        )
        resolver_kwargs = {"clock": clock} if clock is not None else {}
        self.resolver = AvailabilityResolver(
            directory, self.gateway, self.config.scheduling, **resolver_kwargs
        )
        self.store = store or InMemoryBookingStore()
        self.orchestrator = BookingOrchestrator(
            directory, self.resolver, self.gateway, self.store, notifier
        )

    @property
    def provider_name(self) -> str:
        return self.gateway.provider.provider_name

    async def resolve_availability(
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
        """Available slots, capped at ``MAX_SLOTS_RETURNED`` unless ``limit`` is given."""
        return await self.resolver.resolve(
            brand_id,
            service_id,
            employee_id,
            start=start,
            end=end,
            now=now,
            limit=limit if limit is not None else self.config.scheduling.max_slots_returned,
        )

    async def next_available(
        self,
        brand_id: str,
        service_id: str,
        employee_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[TimeSlot]:
        return await self.resolver.next_available(brand_id, service_id, employee_id, now=now)

    async def availability_summary(
        self,
        brand_id: str,
        service_id: str,
        employee_id: Optional[str] = None,
        *,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> AvailabilitySummary:
        return await self.resolver.summarize(
            brand_id, service_id, employee_id, start=start, end=end, now=now
        )

    async def create_booking(self, request: Union[BookingRequest, dict[str, Any]]) -> Booking:
        if not isinstance(request, BookingRequest):
            request = BookingRequest.model_validate(request)
        return await self.orchestrator.create(request)

    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        return await self.orchestrator.cancel(booking_id, reason)

    async def reschedule_booking(
        self,
        booking_id: str,
        new_start: datetime,
        new_end: Optional[datetime] = None,
    ) -> Booking:
        return await self.orchestrator.reschedule(booking_id, new_start, new_end)

    async def get_booking(self, booking_id: str) -> Booking:
        return await self.orchestrator.get(booking_id)

    async def find_booking_by_external_id(self, external_id: str) -> Booking:
        return await self.orchestrator.find_by_external_id(external_id)

    async def list_customer_bookings(
        self,
        email: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Booking]:
        return await self.orchestrator.list_for_customer(email, start, end)

    async def list_staff_bookings(
        self,
        employee_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Booking]:
        return await self.orchestrator.list_for_staff(employee_id, start, end)

    async def booking_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> BookingStats:
        return booking_stats(
            await self.store.list_all(),
            now=now or self.resolver.now(),
            tz=self.config.scheduling.business_timezone,
            directory=self.directory,
            start=start,
            end=end,
        )

    async def close(self) -> None:
        await self.gateway.close()


def build_booking_system(
    config: Optional[AppConfig] = None,
    directory: Optional[Directory] = None,
    provider: Optional[CalendarProvider] = None,
    use_graph: bool = False,
) -> BookingSystem:
    """Wire a ``BookingSystem`` from configuration.

    Without an explicit provider, Microsoft Graph is used when ``use_graph``
    is set; otherwise an empty in-memory calendar backend.
    """
    config = config or settings
    directory = directory or Directory.from_file(config.settings_file)

    notifier: Notifier
    if provider is None and use_graph:
        from brand_booking.providers.graph import GraphCalendarProvider

        provider = GraphCalendarProvider(config.graph)
        if config.notifications.sender:
            notifier = GraphMailNotifier(provider, config.notifications)
        else:
            logger.warning("NOTIFICATION_SENDER not set; notifications will only be logged")
            notifier = LoggingNotifier(config.notifications)
    else:
        notifier = LoggingNotifier(config.notifications)
    if provider is None:
        provider = InMemoryCalendarProvider()

    logger.info("Booking system using the '%s' calendar provider", provider.provider_name)
    return BookingSystem(directory, provider, config=config, notifier=notifier)
