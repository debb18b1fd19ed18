"""
Booking orchestration: create, cancel, and reschedule against the calendar backend.

Create runs REQUESTED -> VALIDATING -> RESERVING -> CONFIRMED. The exact
interval is always re-checked after it was chosen and before anything is
written. Writes happen in a fixed order (canonical reservation, then
optional mirrors); if a mirror write fails, every write already made is
compensated in reverse order and the caller gets a
``PartialReservationError`` describing what happened. A partial write is
never reported as success.

Reschedule creates the new reservation first and only then releases the
old one, so a failure leaves the customer with their original booking.

The re-check and the writes that follow it run under one lock per
calendar involved, so two requests for the same calendars cannot both
pass the re-check before either has written.
"""

import asyncio
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional

from brand_booking.booking.state_machine import (
    BookingState,
    BookingStateMachine,
    BookingTrigger,
)
from brand_booking.booking.store import BookingStore
from brand_booking.directory import Directory
from brand_booking.errors import (
    AlreadyCancelledError,
    BookingError,
    InvalidRequestError,
    NoStaffAvailableError,
    PartialReservationError,
    ProviderError,
    SlotUnavailableError,
)
from brand_booking.logging_context import get_request_logger, set_request_id
from brand_booking.notifications import NotificationContext, NotificationKind, Notifier
from brand_booking.providers.base import AppointmentSpec, EventSpec
from brand_booking.providers.gateway import ProviderGateway
from brand_booking.scheduling.availability import AvailabilityResolver
from brand_booking.scheduling.slot_generator import local_day
from brand_booking.schemas.booking_schema import (
    Booking,
    BookingRequest,
    BookingStatus,
    ProviderRef,
)
from brand_booking.schemas.directory_schema import Brand, Employee, Service
from brand_booking.utils import to_utc

logger = get_request_logger(__name__)

STAFF_MIRROR_PREFIX = "[Booking]"
DEFAULT_CANCEL_MESSAGE = "Cancelled by customer"


@dataclass
class _Customer:
    name: str
    email: str
    phone: Optional[str] = None
    notes: Optional[str] = None


def _new_booking_id() -> str:
    return f"BK-{uuid.uuid4().hex[:8].upper()}"


def _event_subject(service: Service, customer_name: str) -> str:
    return f"{service.name} - {customer_name}"


def _event_body(service: Service, customer: _Customer, employee: Employee) -> str:
    lines = [
        f"<p><strong>Service:</strong> {service.name}</p>",
        f"<p><strong>Customer:</strong> {customer.name} ({customer.email})</p>",
    ]
    if customer.phone:
        lines.append(f"<p><strong>Phone:</strong> {customer.phone}</p>")
    lines.append(f"<p><strong>Staff:</strong> {employee.name}</p>")
    if customer.notes:
        lines.append(f"<p><strong>Notes:</strong> {customer.notes}</p>")
    return "\n".join(lines)


class BookingOrchestrator:
    """Owns every mutation of booking records and their provider writes."""

    def __init__(
        self,
        directory: Directory,
        resolver: AvailabilityResolver,
        gateway: ProviderGateway,
        store: BookingStore,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._gateway = gateway
        self._store = store
        self._notifier = notifier
        self._calendar_locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------ #
    # Create
    # ------------------------------------------------------------------ #

    async def create(self, request: BookingRequest) -> Booking:
        """Validate, re-check, and reserve a new booking.

        Raises:
            NotFoundError / AssociationError / InvalidRequestError: bad input.
            SlotUnavailableError: a required calendar is busy for the interval.
            NoStaffAvailableError: auto-assignment found nobody free.
            ProviderError: the canonical write failed; nothing was written.
            PartialReservationError: a mirror write failed after other writes.
        """
        set_request_id()
        sm = BookingStateMachine()
        logger.info(
            "Create booking: brand=%s service=%s employee=%s start=%s",
            request.brand_id, request.service_id, request.employee_id or "auto",
            request.start.isoformat(),
        )

        sm.transition(BookingTrigger.VALIDATE)
        try:
            brand = self._directory.get_brand(request.brand_id)
            service = self._directory.get_service(request.brand_id, request.service_id)
            staff = self._resolver.staff_for(request.brand_id, request.employee_id)
            start, end = self._interval(brand, service, request.start, request.end)
        except BookingError as exc:
            self._reject(sm, exc)
            raise

        customer = _Customer(
            name=request.customer_name,
            email=request.customer_email,
            phone=request.customer_phone,
            notes=request.notes,
        )
        async with self._hold_calendars(brand, staff):
            try:
                employee = await self._revalidate(
                    brand, staff, start, end, explicit=request.employee_id is not None
                )
            except BookingError as exc:
                self._reject(sm, exc)
                raise
            sm.transition(BookingTrigger.VALIDATION_PASSED)

            refs = await self._reserve(sm, brand, service, employee, customer, start, end)
            now = datetime.now(timezone.utc)
            booking = Booking(
                id=_new_booking_id(),
                brand_id=brand.id,
                service_id=service.id,
                employee_id=employee.id,
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                start=start,
                end=end,
                status=BookingStatus.CONFIRMED,
                provider_refs=refs,
                notes=customer.notes,
                created_at=now,
                updated_at=now,
            )
            await self._store.put(booking)
        logger.info(
            "Booking %s confirmed with %s (%d provider writes)",
            booking.id, employee.id, len(refs),
        )
        await self._notify(NotificationKind.CONFIRMED, booking)
        return booking

    # ------------------------------------------------------------------ #
    # Cancel
    # ------------------------------------------------------------------ #

    async def cancel(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """Cancel a confirmed booking.

        The canonical reservation is released first; if that fails the
        booking stays confirmed and ``ProviderError`` propagates. Mirror
        deletes are best-effort.
        """
        set_request_id()
        async with self._store.lock(booking_id):
            booking = await self._store.get(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise AlreadyCancelledError(booking_id)

            sm = BookingStateMachine(initial=BookingState.CONFIRMED)
            sm.transition(BookingTrigger.CANCEL)
            message = reason or DEFAULT_CANCEL_MESSAGE

            canonical = booking.canonical_ref
            if canonical is not None:
                try:
                    await self._release(canonical, message)
                except ProviderError:
                    sm.transition(BookingTrigger.CANCEL_FAILED)
                    logger.warning("Cancel of %s failed; booking stays confirmed", booking_id)
                    raise
            await self._release_best_effort(
                [ref for ref in booking.provider_refs if ref.role != "canonical"], message
            )

            sm.transition(BookingTrigger.CANCEL_SUCCEEDED)
            if not await self._store.compare_and_set_status(
                booking_id, BookingStatus.CONFIRMED, BookingStatus.CANCELLED
            ):
                raise AlreadyCancelledError(booking_id)
            booking.status = BookingStatus.CANCELLED
            booking.cancellation_reason = reason
            booking.updated_at = datetime.now(timezone.utc)
            await self._store.put(booking)

        logger.info("Booking %s cancelled", booking_id)
        await self._notify(NotificationKind.CANCELLED, booking)
        return booking

    # ------------------------------------------------------------------ #
    # Reschedule
    # ------------------------------------------------------------------ #

    async def reschedule(
        self,
        booking_id: str,
        new_start: datetime,
        new_end: Optional[datetime] = None,
    ) -> Booking:
        """Move a booking to a new interval with the same staff member.

        The new reservation is created before the old one is released. If
        the new reservation fails, the original booking is untouched.
        """
        set_request_id()
        async with self._store.lock(booking_id):
            booking = await self._store.get(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise AlreadyCancelledError(booking_id)

            sm = BookingStateMachine(initial=BookingState.CONFIRMED)
            sm.transition(BookingTrigger.RESCHEDULE)

            brand = self._directory.get_brand(booking.brand_id)
            service = self._directory.get_service(booking.brand_id, booking.service_id)
            employee = self._directory.get_brand_employee(booking.brand_id, booking.employee_id)
            customer = _Customer(
                name=booking.customer_name,
                email=booking.customer_email,
                phone=booking.customer_phone,
                notes=booking.notes,
            )
            try:
                start, end = self._interval(
                    brand, service, to_utc(new_start),
                    to_utc(new_end) if new_end is not None else None,
                )
                async with self._hold_calendars(brand, [employee]):
                    await self._revalidate(brand, [employee], start, end, explicit=True)
                    # Reservation writes run on their own machine; the booking
                    # stays CONFIRMED on its old interval until they succeed.
                    write_sm = BookingStateMachine(initial=BookingState.RESERVING)
                    new_refs = await self._reserve(
                        write_sm, brand, service, employee, customer, start, end
                    )
            except BookingError:
                sm.transition(BookingTrigger.RESCHEDULE_FINISHED)
                raise

            old_refs = list(booking.provider_refs)
            await self._release_best_effort(
                old_refs, f"Rescheduled to {start.isoformat()}"
            )

            booking.start = start
            booking.end = end
            booking.provider_refs = new_refs
            booking.updated_at = datetime.now(timezone.utc)
            await self._store.put(booking)
            sm.transition(BookingTrigger.RESCHEDULE_FINISHED)

        logger.info("Booking %s rescheduled to %s", booking_id, start.isoformat())
        await self._notify(NotificationKind.RESCHEDULED, booking)
        return booking

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get(self, booking_id: str) -> Booking:
        return await self._store.get(booking_id)

    async def find_by_external_id(self, external_id: str) -> Booking:
        """Return the booking owning a calendar event or appointment id."""
        return await self._store.find_by_event_id(external_id)

    async def list_for_customer(
        self,
        email: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Booking]:
        return await self._store.list_by_customer(email, start, end)

    async def list_for_staff(
        self,
        employee_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Booking]:
        self._directory.get_employee(employee_id)
        return await self._store.list_by_staff(employee_id, start, end)

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def _interval(
        self,
        brand: Brand,
        service: Service,
        start: datetime,
        end: Optional[datetime],
    ) -> tuple[datetime, datetime]:
        duration = timedelta(minutes=service.duration_minutes)
        if end is None:
            end = start + duration
        elif end - start != duration:
            raise InvalidRequestError(
                f"Requested interval is {int((end - start).total_seconds() // 60)} minutes; "
                f"'{service.name}' takes {service.duration_minutes} minutes."
            )

        now = self._resolver.now()
        if start <= now:
            raise InvalidRequestError("Bookings must start in the future.")
        if self._resolver.excludes_today(brand):
            tz = self._resolver.timezone_for(brand)
            if local_day(start, tz) == local_day(now, tz):
                raise InvalidRequestError("Same-day bookings are not accepted for this brand.")
        return start, end

    def _reject(self, sm: BookingStateMachine, exc: BookingError) -> None:
        sm.transition(BookingTrigger.VALIDATION_FAILED)
        logger.info("Booking rejected during validation: %s", exc.message)

    @asynccontextmanager
    async def _hold_calendars(
        self, brand: Brand, staff: list[Employee]
    ) -> AsyncIterator[None]:
        """Lock every calendar the re-check reads, in a fixed order."""
        calendar_ids = {brand.service_calendar_id, brand.calendar_id}
        calendar_ids.update(employee.primary_calendar_id for employee in staff)
        async with AsyncExitStack() as stack:
            for calendar_id in sorted(calendar_ids):
                lock = self._calendar_locks.setdefault(calendar_id, asyncio.Lock())
                await stack.enter_async_context(lock)
            yield

    async def _revalidate(
        self,
        brand: Brand,
        staff: list[Employee],
        start: datetime,
        end: datetime,
        explicit: bool,
    ) -> Employee:
        """Re-check the exact interval and pick the staff member.

        Returns the requested employee, or the first free one in roster
        order when auto-assigning.
        """
        check = await self._resolver.check_interval(brand, staff, start, end)
        if not check.calendars_free:
            logger.info(
                "Interval %s no longer free (service=%s brand=%s)",
                start.isoformat(), check.service_free, check.brand_free,
            )
            raise SlotUnavailableError()
        if not check.free_staff:
            if explicit:
                raise SlotUnavailableError()
            raise NoStaffAvailableError()
        chosen = check.free_staff[0]
        return next(emp for emp in staff if emp.id == chosen)

    # ------------------------------------------------------------------ #
    # Provider writes
    # ------------------------------------------------------------------ #

    async def _reserve(
        self,
        sm: BookingStateMachine,
        brand: Brand,
        service: Service,
        employee: Employee,
        customer: _Customer,
        start: datetime,
        end: datetime,
    ) -> list[ProviderRef]:
        subject = _event_subject(service, customer.name)
        body = _event_body(service, customer, employee)
        attendees = [(customer.email, customer.name)]

        try:
            canonical = await self._write_canonical(
                brand, service, employee, customer, subject, body, attendees, start, end
            )
        except ProviderError as exc:
            sm.transition(BookingTrigger.CANONICAL_WRITE_FAILED)
            if exc.timed_out:
                logger.warning(
                    "Canonical write timed out in %s; it may still have been created",
                    brand.business_id or brand.calendar_id,
                )
            else:
                logger.warning("Canonical write failed; nothing to roll back")
            raise
        written = [canonical]

        mirrors: list[tuple[str, str, EventSpec]] = []
        if brand.mirror_to_brand_calendar and canonical.kind == "appointment":
            mirrors.append(("brand_mirror", brand.calendar_id, EventSpec(
                subject=subject, start=start, end=end, body=body, attendees=attendees,
            )))
        if brand.mirror_to_staff_calendar:
            mirrors.append(("staff_mirror", employee.primary_calendar_id, EventSpec(
                subject=f"{STAFF_MIRROR_PREFIX} {subject}", start=start, end=end, body=body,
            )))

        for role, calendar_id, spec in mirrors:
            try:
                event_id = await self._gateway.create_event(calendar_id, spec)
            except ProviderError as exc:
                sm.transition(BookingTrigger.MIRROR_WRITE_FAILED)
                await self._roll_back(sm, written, role, calendar_id, exc)
            written.append(ProviderRef(
                kind="event", role=role, calendar_id=calendar_id, external_id=event_id,
            ))

        sm.transition(BookingTrigger.WRITES_SUCCEEDED)
        return written

    async def _write_canonical(
        self,
        brand: Brand,
        service: Service,
        employee: Employee,
        customer: _Customer,
        subject: str,
        body: str,
        attendees: list[tuple[str, str]],
        start: datetime,
        end: datetime,
    ) -> ProviderRef:
        if brand.business_id and employee.staff_member_id:
            appointment_id = await self._gateway.create_appointment(
                brand.business_id,
                AppointmentSpec(
                    service_id=service.id,
                    start=start,
                    end=end,
                    customer_name=customer.name,
                    customer_email=customer.email,
                    customer_phone=customer.phone,
                    staff_member_ids=[employee.staff_member_id],
                    notes=customer.notes,
                ),
            )
            return ProviderRef(
                kind="appointment", role="canonical",
                calendar_id=brand.business_id, external_id=appointment_id,
            )

        event_id = await self._gateway.create_event(
            brand.calendar_id,
            EventSpec(
                subject=subject, start=start, end=end, body=body,
                attendees=attendees + [(employee.email, employee.name)],
            ),
        )
        return ProviderRef(
            kind="event", role="canonical",
            calendar_id=brand.calendar_id, external_id=event_id,
        )

    async def _roll_back(
        self,
        sm: BookingStateMachine,
        written: list[ProviderRef],
        failed_role: str,
        failed_calendar_id: str,
        cause: ProviderError,
    ) -> None:
        """Compensate ``written`` in reverse order, then raise.

        A failed write that timed out may still exist at the backend; it
        is reported as ``in_doubt`` since there is no id to delete it by.
        """
        sm.transition(BookingTrigger.START_ROLLBACK)
        logger.warning(
            "%s write failed after %d successful writes; rolling back", failed_role, len(written)
        )
        orphaned: list[ProviderRef] = []
        for ref in reversed(written):
            try:
                await self._release(ref, "Booking could not be completed")
            except ProviderError as exc:
                logger.error(
                    "Compensation of %s %s failed: %s", ref.kind, ref.external_id, exc.message
                )
                orphaned.append(ref)
        sm.transition(BookingTrigger.ROLLBACK_FINISHED)

        in_doubt = []
        if cause.timed_out:
            in_doubt.append({"role": failed_role, "calendar_id": failed_calendar_id})
            logger.error(
                "%s write to %s timed out and may exist without a booking",
                failed_role, failed_calendar_id,
            )

        if orphaned or in_doubt:
            raise PartialReservationError(
                f"Writing the {failed_role} failed and {len(orphaned) + len(in_doubt)} "
                "write(s) may still exist; manual reconciliation is required.",
                succeeded=written,
                failed=failed_role,
                rolled_back=False,
                orphaned=orphaned,
                in_doubt=in_doubt,
            ) from cause
        raise PartialReservationError(
            f"Writing the {failed_role} failed; all earlier writes were rolled back.",
            succeeded=written,
            failed=failed_role,
            rolled_back=True,
        ) from cause

    async def _release(self, ref: ProviderRef, message: str) -> None:
        if ref.kind == "appointment":
            await self._gateway.cancel_appointment(ref.calendar_id, ref.external_id, message)
        else:
            await self._gateway.delete_event(ref.calendar_id, ref.external_id)

    async def _release_best_effort(
        self, refs: list[ProviderRef], message: str
    ) -> None:
        for ref in refs:
            try:
                await self._release(ref, message)
            except ProviderError as exc:
                logger.warning(
                    "Could not release %s %s in %s: %s",
                    ref.role, ref.external_id, ref.calendar_id, exc.message,
                )

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    async def _notify(self, kind: NotificationKind, booking: Booking) -> None:
        if self._notifier is None or not self._notifier.config.enabled:
            return
        try:
            brand = self._directory.get_brand(booking.brand_id)
            context = NotificationContext(
                brand_name=brand.name,
                service_name=self._directory.get_service(brand.id, booking.service_id).name,
                employee_name=self._directory.get_employee(booking.employee_id).name,
                timezone=self._resolver.timezone_for(brand),
            )
            await self._notifier.notify(kind, booking, context)
        except Exception as exc:
            logger.warning(
                "%s notification for %s failed: %s", kind.value, booking.id, exc
            )
