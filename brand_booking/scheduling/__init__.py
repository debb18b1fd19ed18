from brand_booking.scheduling.availability import (
    AvailabilityResolver,
    AvailabilitySummary,
    DateAvailability,
    IntervalCheck,
)
from brand_booking.scheduling.slot_generator import (
    FixedDailyHours,
    PatternHours,
    SlotSequence,
    WeeklyHours,
    WorkingHours,
    generate_slots,
)

__all__ = [
    "AvailabilityResolver", "AvailabilitySummary", "DateAvailability", "IntervalCheck",
    "FixedDailyHours", "PatternHours", "SlotSequence", "WeeklyHours", "WorkingHours",
    "generate_slots",
]
