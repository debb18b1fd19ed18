"""
Finite state machine for the booking lifecycle.

Every booking operation walks an explicit transition table, so a booking
can never reach CONFIRMED without passing through VALIDATING and
RESERVING, and a partial reservation always goes through ROLLING_BACK.

Usage:
    sm = BookingStateMachine()
    sm.transition(BookingTrigger.VALIDATE)
    assert sm.current_state == BookingState.VALIDATING
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    """All states a booking operation can be in."""
    REQUESTED = "requested"
    VALIDATING = "validating"
    RESERVING = "reserving"
    PARTIALLY_RESERVED = "partially_reserved"
    ROLLING_BACK = "rolling_back"
    CONFIRMED = "confirmed"
    RESCHEDULING = "rescheduling"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class BookingTrigger(str, Enum):
    """Events that cause state transitions."""
    VALIDATE = "validate"
    VALIDATION_PASSED = "validation_passed"
    VALIDATION_FAILED = "validation_failed"
    WRITES_SUCCEEDED = "writes_succeeded"
    CANONICAL_WRITE_FAILED = "canonical_write_failed"
    MIRROR_WRITE_FAILED = "mirror_write_failed"
    START_ROLLBACK = "start_rollback"
    ROLLBACK_FINISHED = "rollback_finished"
    CANCEL = "cancel"
    CANCEL_SUCCEEDED = "cancel_succeeded"
    CANCEL_FAILED = "cancel_failed"
    RESCHEDULE = "reschedule"
    RESCHEDULE_FINISHED = "reschedule_finished"


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: BookingState
    to_state: BookingState
    trigger: BookingTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: BookingState
    entered_at: datetime
    trigger: Optional[BookingTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class BookingStateMachine:
    """
    Deterministic state machine for one booking.

    Transitions not listed in ``TRANSITIONS`` are rejected with an error
    naming the triggers that are allowed from the current state.
    """

    TRANSITIONS: list[Transition] = [
        # --- Validation ---
        Transition(BookingState.REQUESTED, BookingState.VALIDATING,
                   BookingTrigger.VALIDATE),
        Transition(BookingState.REQUESTED, BookingState.REJECTED,
                   BookingTrigger.VALIDATION_FAILED),
        Transition(BookingState.VALIDATING, BookingState.RESERVING,
                   BookingTrigger.VALIDATION_PASSED),
        Transition(BookingState.VALIDATING, BookingState.REJECTED,
                   BookingTrigger.VALIDATION_FAILED),

        # --- Reservation ---
        Transition(BookingState.RESERVING, BookingState.CONFIRMED,
                   BookingTrigger.WRITES_SUCCEEDED),
        Transition(BookingState.RESERVING, BookingState.REJECTED,
                   BookingTrigger.CANONICAL_WRITE_FAILED),
        Transition(BookingState.RESERVING, BookingState.PARTIALLY_RESERVED,
                   BookingTrigger.MIRROR_WRITE_FAILED),

        # --- Compensation ---
        Transition(BookingState.PARTIALLY_RESERVED, BookingState.ROLLING_BACK,
                   BookingTrigger.START_ROLLBACK),
        Transition(BookingState.ROLLING_BACK, BookingState.REJECTED,
                   BookingTrigger.ROLLBACK_FINISHED),

        # --- Cancellation ---
        Transition(BookingState.CONFIRMED, BookingState.CANCELLING,
                   BookingTrigger.CANCEL),
        Transition(BookingState.CANCELLING, BookingState.CANCELLED,
                   BookingTrigger.CANCEL_SUCCEEDED),
        Transition(BookingState.CANCELLING, BookingState.CONFIRMED,
                   BookingTrigger.CANCEL_FAILED),

        # --- Reschedule ---
        Transition(BookingState.CONFIRMED, BookingState.RESCHEDULING,
                   BookingTrigger.RESCHEDULE),
        Transition(BookingState.RESCHEDULING, BookingState.CONFIRMED,
                   BookingTrigger.RESCHEDULE_FINISHED),
    ]

    TERMINAL_STATES = frozenset({BookingState.CANCELLED, BookingState.REJECTED})

    def __init__(self, initial: BookingState = BookingState.REQUESTED) -> None:
        self._current_state = initial
        self._history: list[StateEntry] = [
            StateEntry(state=initial, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_state(self) -> BookingState:
        return self._current_state

    def transition(self, trigger: BookingTrigger) -> BookingState:
        """
        Execute a state transition.

        Args:
            trigger: The event triggering the transition.

        Returns:
            The new booking state.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self._current_state and t.trigger == trigger:
                old_state = self._current_state
                self._current_state = t.to_state
                self._history.append(StateEntry(
                    state=self._current_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "Booking transition: %s -> %s (trigger: %s)",
                    old_state.value, self._current_state.value, trigger.value,
                )
                return self._current_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[BookingTrigger]:
        """Return all triggers valid from the current state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self._current_state]

    def get_history(self) -> list[StateEntry]:
        return list(self._history)

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]

    def is_terminal(self) -> bool:
        return self._current_state in self.TERMINAL_STATES
