"""
Booking record storage.

The orchestrator is the only writer. Records handed out are copies, so a
caller holding a ``Booking`` cannot change stored state behind the
orchestrator's back. ``lock(booking_id)`` serializes cancel and reschedule
on the same booking.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from brand_booking.errors import NotFoundError
from brand_booking.schemas.booking_schema import Booking, BookingStatus
from brand_booking.utils import to_utc

logger = logging.getLogger(__name__)


def _in_range(booking: Booking, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and booking.end <= to_utc(start):
        return False
    if end is not None and booking.start >= to_utc(end):
        return False
    return True


class BookingStore(ABC):
    """Abstract keyed store of booking records."""

    @abstractmethod
    async def put(self, booking: Booking) -> None:
        """Insert or replace a booking."""

    @abstractmethod
    async def get(self, booking_id: str) -> Booking:
        """Return a booking or raise ``NotFoundError``."""

    @abstractmethod
    async def find_by_event_id(self, external_id: str) -> Booking:
        """Return the booking that owns a provider write or raise ``NotFoundError``."""

    @abstractmethod
    async def list_all(self) -> list[Booking]:
        """Return every stored booking."""

    @abstractmethod
    async def compare_and_set_status(
        self, booking_id: str, expected: BookingStatus, new: BookingStatus
    ) -> bool:
        """Set ``new`` only when the stored status is ``expected``."""

    @abstractmethod
    def lock(self, booking_id: str):
        """Async context manager serializing mutations of one booking."""

    async def list_by_customer(
        self,
        email: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Booking]:
        wanted = email.strip().lower()
        return sorted(
            (b for b in await self.list_all()
             if b.customer_email.lower() == wanted and _in_range(b, start, end)),
            key=lambda b: b.start,
        )

    async def list_by_staff(
        self,
        employee_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Booking]:
        return sorted(
            (b for b in await self.list_all()
             if b.employee_id == employee_id and _in_range(b, start, end)),
            key=lambda b: b.start,
        )


class InMemoryBookingStore(BookingStore):
    """Dict-backed store with one ``asyncio.Lock`` per booking id."""

    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def put(self, booking: Booking) -> None:
        self._bookings[booking.id] = booking.model_copy(deep=True)
        logger.debug("Stored booking %s (%s)", booking.id, booking.status.value)

    async def get(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)
        return booking.model_copy(deep=True)

    async def find_by_event_id(self, external_id: str) -> Booking:
        for booking in self._bookings.values():
            if external_id in booking.external_ids:
                return booking.model_copy(deep=True)
        raise NotFoundError("booking", external_id)

    async def list_all(self) -> list[Booking]:
        return [booking.model_copy(deep=True) for booking in self._bookings.values()]

    async def compare_and_set_status(
        self, booking_id: str, expected: BookingStatus, new: BookingStatus
    ) -> bool:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)
        if booking.status != expected:
            return False
        self._bookings[booking_id] = booking.model_copy(update={"status": new})
        return True

    @asynccontextmanager
    async def lock(self, booking_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(booking_id, asyncio.Lock())
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._bookings)
