from brand_booking.booking.orchestrator import BookingOrchestrator
from brand_booking.booking.state_machine import (
    BookingState,
    BookingStateMachine,
    BookingTrigger,
    InvalidTransitionError,
)
from brand_booking.booking.store import BookingStore, InMemoryBookingStore

__all__ = [
    "BookingOrchestrator", "BookingState", "BookingStateMachine", "BookingTrigger",
    "InvalidTransitionError", "BookingStore", "InMemoryBookingStore",
]
