from brand_booking.providers.base import (
    AppointmentSpec,
    CalendarProvider,
    EventSpec,
    is_blocking,
    mine_availability_pattern,
)
from brand_booking.providers.gateway import ProviderGateway
from brand_booking.providers.memory import InMemoryCalendarProvider

__all__ = [
    "AppointmentSpec", "CalendarProvider", "EventSpec", "is_blocking",
    "mine_availability_pattern", "ProviderGateway", "InMemoryCalendarProvider",
]
