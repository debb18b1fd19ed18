"""
Admin statistics over stored bookings.

Counts by status, bookings starting today, the busiest start hours, and the
most-booked services. Hours and "today" are evaluated in the business
timezone.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from brand_booking.directory import Directory
from brand_booking.errors import NotFoundError
from brand_booking.schemas.booking_schema import Booking, BookingStatus
from brand_booking.utils import to_utc

logger = logging.getLogger(__name__)

TOP_TIME_SLOTS = 5
TOP_SERVICES = 4


@dataclass
class BookingStats:
    """Aggregated booking figures for the admin dashboard."""

    total_bookings: int = 0
    confirmed_bookings: int = 0
    cancelled_bookings: int = 0
    pending_bookings: int = 0
    bookings_today: int = 0
    popular_time_slots: list[dict] = field(default_factory=list)
    popular_services: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_bookings": self.total_bookings,
            "confirmed_bookings": self.confirmed_bookings,
            "cancelled_bookings": self.cancelled_bookings,
            "pending_bookings": self.pending_bookings,
            "bookings_today": self.bookings_today,
            "popular_time_slots": list(self.popular_time_slots),
            "popular_services": list(self.popular_services),
        }


def _service_name(directory: Optional[Directory], booking: Booking) -> str:
    if directory is None:
        return booking.service_id
    try:
        return directory.get_service(booking.brand_id, booking.service_id).name
    except NotFoundError:
        return booking.service_id


def booking_stats(
    bookings: Iterable[Booking],
    now: datetime,
    tz: str = "UTC",
    directory: Optional[Directory] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> BookingStats:
    """Calculate statistics for bookings starting in ``[start, end)``."""
    zone = ZoneInfo(tz)
    today = to_utc(now).astimezone(zone).date()
    selected = [
        b for b in bookings
        if (start is None or b.start >= to_utc(start))
        and (end is None or b.start < to_utc(end))
    ]

    stats = BookingStats(total_bookings=len(selected))
    statuses = Counter(b.status for b in selected)
    stats.confirmed_bookings = statuses[BookingStatus.CONFIRMED]
    stats.cancelled_bookings = statuses[BookingStatus.CANCELLED]
    stats.pending_bookings = statuses[BookingStatus.PENDING]
    stats.bookings_today = sum(1 for b in selected if b.start.astimezone(zone).date() == today)

    hours = Counter(f"{b.start.astimezone(zone).hour:02d}:00" for b in selected)
    stats.popular_time_slots = [
        {"time": hour, "count": count} for hour, count in hours.most_common(TOP_TIME_SLOTS)
    ]

    services = Counter((b.brand_id, b.service_id) for b in selected)
    sample = {(b.brand_id, b.service_id): b for b in selected}
    stats.popular_services = [
        {"service_id": key[1], "name": _service_name(directory, sample[key]), "count": count}
        for key, count in services.most_common(TOP_SERVICES)
    ]

    logger.debug("Calculated stats over %d bookings", len(selected))
    return stats
