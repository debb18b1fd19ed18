"""Error taxonomy shared by the resolver, orchestrator, and transport layer.

Every error carries an HTTP-equivalent ``status_code`` and a ``retriable``
flag so a thin API layer can map it without inspecting the message.
"""

from typing import Any, Optional


class BookingError(Exception):
    """Base class for all booking-core errors."""

    status_code: int = 500
    retriable: bool = False
    code: str = "booking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retriable": self.retriable,
        }


class NotFoundError(BookingError):
    """A brand, service, employee, or booking id is unknown."""

    status_code = 404
    code = "not_found"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind.capitalize()} '{identifier}' not found.")
        self.kind = kind
        self.identifier = identifier


class AssociationError(BookingError):
    """An employee is not linked to the requested brand."""

    status_code = 400
    code = "employee_not_in_brand"

    def __init__(self, employee_id: str, brand_id: str) -> None:
        super().__init__(f"Employee '{employee_id}' does not work for brand '{brand_id}'.")
        self.employee_id = employee_id
        self.brand_id = brand_id


class InvalidRequestError(BookingError):
    """A request is malformed (bad interval, past start, wrong duration)."""

    status_code = 400
    code = "invalid_request"


class SlotUnavailableError(BookingError):
    """The requested interval was taken between listing and reserving."""

    status_code = 409
    retriable = True
    code = "slot_unavailable"

    def __init__(self, message: str = "This time slot is no longer available. Please choose another time.") -> None:
        super().__init__(message)


class NoStaffAvailableError(BookingError):
    """Auto-assignment found no staff member free for the interval."""

    status_code = 409
    retriable = True
    code = "no_staff_available"

    def __init__(self, message: str = "No staff member is available at this time. Please choose a different time.") -> None:
        super().__init__(message)


class ProviderError(BookingError):
    """The calendar backend failed, timed out, or was unreachable.

    ``timed_out`` means the call was abandoned locally; a write may still
    have landed at the backend.
    """

    status_code = 502
    code = "provider_error"

    def __init__(
        self, message: str, operation: Optional[str] = None, timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.timed_out = timed_out


class AlreadyCancelledError(BookingError):
    """A cancel or reschedule targeted a booking that is already cancelled."""

    status_code = 409
    code = "already_cancelled"

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking '{booking_id}' is already cancelled.")
        self.booking_id = booking_id


class PartialReservationError(BookingError):
    """A multi-calendar write sequence failed part way through.

    ``succeeded`` lists the writes that went through before the failure.
    ``rolled_back`` is True when every one of them was compensated and
    nothing else can be left behind. Otherwise ``orphaned`` lists the writes
    that are still live, and ``in_doubt`` names a timed-out write that may
    have landed without an id. Both need operator reconciliation.
    """

    status_code = 502
    code = "partial_reservation"

    def __init__(
        self,
        message: str,
        succeeded: list[Any],
        failed: str,
        rolled_back: bool,
        orphaned: Optional[list[Any]] = None,
        in_doubt: Optional[list[dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.succeeded = list(succeeded)
        self.failed = failed
        self.rolled_back = rolled_back
        self.orphaned = list(orphaned or [])
        self.in_doubt = list(in_doubt or [])

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            succeeded=[_describe(ref) for ref in self.succeeded],
            failed=self.failed,
            rolled_back=self.rolled_back,
            orphaned=[_describe(ref) for ref in self.orphaned],
            in_doubt=list(self.in_doubt),
        )
        return data


def _describe(ref: Any) -> Any:
    return ref.model_dump(mode="json") if hasattr(ref, "model_dump") else ref
