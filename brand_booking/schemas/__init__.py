from brand_booking.schemas.availability_schema import (
    AvailabilityPatternEntry,
    CalendarEvent,
    DayHours,
    TimeSlot,
    TimeWindow,
)
from brand_booking.schemas.booking_schema import (
    Booking,
    BookingRequest,
    BookingStatus,
    ProviderRef,
)
from brand_booking.schemas.directory_schema import Brand, DirectorySettings, Employee, Service

__all__ = [
    "AvailabilityPatternEntry", "CalendarEvent", "DayHours", "TimeSlot", "TimeWindow",
    "Booking", "BookingRequest", "BookingStatus", "ProviderRef",
    "Brand", "DirectorySettings", "Employee", "Service",
]
