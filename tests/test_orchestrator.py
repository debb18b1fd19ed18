"""Tests for booking creation, cancellation, and rescheduling."""

import asyncio
from dataclasses import replace

import pytest

from brand_booking.booking.orchestrator import BookingOrchestrator
from brand_booking.config import NotificationConfig
from brand_booking.errors import (
    AlreadyCancelledError,
    AssociationError,
    InvalidRequestError,
    NoStaffAvailableError,
    NotFoundError,
    PartialReservationError,
    ProviderError,
    SlotUnavailableError,
)
from brand_booking.notifications import NotificationKind, Notifier
from brand_booking.providers.gateway import ProviderGateway
from brand_booking.providers.memory import InMemoryCalendarProvider
from brand_booking.scheduling.availability import AvailabilityResolver
from brand_booking.schemas.booking_schema import BookingStatus
from tests.conftest import BRAND_CAL, BUSINESS_CAL, NOW, at, make_request

MIRROR_BRAND_CAL = "brand@mirrored.test"
MIRROR_BUSINESS_CAL = "biz@mirrored.test"


class ExplodingNotifier(Notifier):
    async def notify(self, kind, booking, context):
        raise RuntimeError("smtp down")


class SlowMirrorProvider(InMemoryCalendarProvider):
    """Stalls brand-mirror writes long enough to hit the gateway timeout."""

    async def create_event(self, calendar_id, spec):
        if calendar_id == MIRROR_BRAND_CAL:
            await asyncio.sleep(0.5)
        return await super().create_event(calendar_id, spec)


class TestCreate:
    @pytest.mark.asyncio
    async def test_confirmed_booking_with_appointment(self, orchestrator, provider, store):
        booking = await orchestrator.create(make_request())
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.id.startswith("BK-")
        assert booking.employee_id == "anna"
        assert booking.end == at(10)
        assert [ref.role for ref in booking.provider_refs] == ["canonical"]
        assert booking.canonical_ref.kind == "appointment"
        assert booking.canonical_ref.calendar_id == BUSINESS_CAL
        assert booking.canonical_ref.external_id in provider.appointments_for(BUSINESS_CAL)
        assert (await store.get(booking.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_appointment_carries_staff_and_customer(self, orchestrator, provider):
        booking = await orchestrator.create(make_request())
        spec = provider.appointments_for(BUSINESS_CAL)[booking.canonical_ref.external_id]
        assert spec.staff_member_ids == ["staff-anna"]
        assert spec.customer_email == "jane@example.com"
        assert spec.customer_phone == "+4512345678"

    @pytest.mark.asyncio
    async def test_staff_without_bookings_id_gets_brand_event(self, orchestrator, provider):
        booking = await orchestrator.create(make_request(employee_id="carla"))
        ref = booking.canonical_ref
        assert ref.kind == "event"
        assert ref.calendar_id == BRAND_CAL
        event = provider.events_for(BRAND_CAL)[0]
        assert event.subject == "Consultation - Jane Doe"

    @pytest.mark.asyncio
    async def test_confirmation_notification_sent(self, orchestrator, notifier):
        booking = await orchestrator.create(make_request())
        assert notifier.sent == [(NotificationKind.CONFIRMED, booking.id)]

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_booking(
        self, directory, resolver, gateway, store
    ):
        orchestrator = BookingOrchestrator(
            directory, resolver, gateway, store,
            ExplodingNotifier(NotificationConfig(enabled=True)),
        )
        booking = await orchestrator.create(make_request())
        assert booking.status == BookingStatus.CONFIRMED
        assert len(store) == 1


class TestCreateValidation:
    @pytest.mark.asyncio
    async def test_unknown_brand(self, orchestrator, provider):
        with pytest.raises(NotFoundError):
            await orchestrator.create(make_request(brand_id="nope"))
        assert provider.write_log == []

    @pytest.mark.asyncio
    async def test_employee_not_in_brand(self, orchestrator, provider):
        with pytest.raises(AssociationError):
            await orchestrator.create(make_request(employee_id="dana"))
        assert provider.write_log == []

    @pytest.mark.asyncio
    async def test_end_must_match_service_duration(self, orchestrator):
        with pytest.raises(InvalidRequestError, match="60 minutes"):
            await orchestrator.create(make_request(end=at(9, 30)))

    @pytest.mark.asyncio
    async def test_explicit_matching_end_accepted(self, orchestrator):
        booking = await orchestrator.create(make_request(end=at(10)))
        assert booking.end == at(10)

    @pytest.mark.asyncio
    async def test_start_in_past_rejected(self, orchestrator):
        with pytest.raises(InvalidRequestError, match="future"):
            await orchestrator.create(make_request(start=at(9, day=1)))


class TestRevalidation:
    @pytest.mark.asyncio
    async def test_conflict_injected_after_listing(self, orchestrator, resolver, provider):
        slots = await resolver.resolve("acme", "consult", "anna", start=at(0), end=at(23))
        assert slots[0].start == at(9)

        provider.add_event("anna@acme.test", at(9), at(10))
        with pytest.raises(SlotUnavailableError):
            await orchestrator.create(make_request(start=slots[0].start))
        assert provider.write_log == []

    @pytest.mark.asyncio
    async def test_brand_calendar_conflict(self, orchestrator, provider):
        provider.add_event(BRAND_CAL, at(9, 30), at(9, 45))
        with pytest.raises(SlotUnavailableError):
            await orchestrator.create(make_request(employee_id=None))

    @pytest.mark.asyncio
    async def test_second_identical_booking_rejected(self, orchestrator, store):
        await orchestrator.create(make_request())
        with pytest.raises(SlotUnavailableError) as exc_info:
            await orchestrator.create(make_request(customer_email="other@example.com"))
        assert exc_info.value.status_code == 409
        assert exc_info.value.retriable
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_provider_error_during_check_fails_closed(self, orchestrator, provider):
        provider.fail_reads.add("anna@acme.test")
        with pytest.raises(SlotUnavailableError):
            await orchestrator.create(make_request())

    @pytest.mark.asyncio
    async def test_marker_text_in_customer_name_still_blocks(self, orchestrator, provider):
        provider.add_event("brand@beta.test", at(9), at(12), show_as="free", subject="Available")
        request = make_request(
            brand_id="beta", service_id="checkup", employee_id="dana", customer_name="Available Jones",
        )
        await orchestrator.create(request)
        assert provider.events_for("brand@beta.test")[-1].subject == "Check-up - Available Jones"
        with pytest.raises(SlotUnavailableError):
            await orchestrator.create(request)


class TestAutoAssign:
    @pytest.mark.asyncio
    async def test_picks_first_free_in_roster_order(self, orchestrator, provider):
        provider.add_event("anna@acme.test", at(9), at(10))
        booking = await orchestrator.create(make_request(employee_id=None))
        assert booking.employee_id == "bo"

    @pytest.mark.asyncio
    async def test_picks_first_when_all_free(self, orchestrator):
        booking = await orchestrator.create(make_request(employee_id=None))
        assert booking.employee_id == "anna"

    @pytest.mark.asyncio
    async def test_no_staff_available(self, orchestrator, provider):
        for cal in ("anna@acme.test", "bo@acme.test", "carla@acme.test"):
            provider.add_event(cal, at(9), at(10))
        with pytest.raises(NoStaffAvailableError):
            await orchestrator.create(make_request(employee_id=None))
        assert provider.write_log == []


class TestMirrorsAndRollback:
    @pytest.mark.asyncio
    async def test_all_mirrors_written(self, orchestrator, provider):
        booking = await orchestrator.create(make_request(brand_id="mirrored"))
        assert [ref.role for ref in booking.provider_refs] == [
            "canonical", "brand_mirror", "staff_mirror",
        ]
        staff_event = provider.events_for("anna@acme.test")[0]
        assert staff_event.subject.startswith("[Booking] ")
        assert len(provider.events_for(MIRROR_BRAND_CAL)) == 1

    @pytest.mark.asyncio
    async def test_brand_mirror_failure_rolls_back_canonical(self, orchestrator, provider, store):
        provider.fail_writes.add(MIRROR_BRAND_CAL)
        with pytest.raises(PartialReservationError) as exc_info:
            await orchestrator.create(make_request(brand_id="mirrored"))

        err = exc_info.value
        assert err.rolled_back
        assert err.failed == "brand_mirror"
        assert [ref.role for ref in err.succeeded] == ["canonical"]
        assert err.orphaned == []
        assert provider.appointments_for(MIRROR_BUSINESS_CAL) == {}
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_rollback_runs_in_reverse_order(self, orchestrator, provider):
        provider.fail_writes.add("anna@acme.test")
        with pytest.raises(PartialReservationError):
            await orchestrator.create(make_request(brand_id="mirrored"))
        assert [op for op, _, _ in provider.write_log] == [
            "create_appointment", "create_event", "delete_event", "cancel_appointment",
        ]
        assert provider.events_for(MIRROR_BRAND_CAL) == []

    @pytest.mark.asyncio
    async def test_failed_compensation_reports_orphans(self, orchestrator, provider):
        provider.fail_writes.add(MIRROR_BRAND_CAL)
        provider.fail_deletes.add(MIRROR_BUSINESS_CAL)
        with pytest.raises(PartialReservationError) as exc_info:
            await orchestrator.create(make_request(brand_id="mirrored"))

        err = exc_info.value
        assert not err.rolled_back
        assert [ref.kind for ref in err.orphaned] == ["appointment"]
        payload = err.to_dict()
        assert payload["error"] == "partial_reservation"
        assert payload["orphaned"][0]["calendar_id"] == MIRROR_BUSINESS_CAL

    @pytest.mark.asyncio
    async def test_timed_out_mirror_reported_in_doubt(
        self, directory, scheduling_config, provider_config, store
    ):
        provider = SlowMirrorProvider()
        gateway = ProviderGateway(provider, replace(provider_config, timeout_seconds=0.05))
        resolver = AvailabilityResolver(directory, gateway, scheduling_config, clock=lambda: NOW)
        orchestrator = BookingOrchestrator(directory, resolver, gateway, store)

        with pytest.raises(PartialReservationError) as exc_info:
            await orchestrator.create(make_request(brand_id="mirrored"))

        err = exc_info.value
        assert not err.rolled_back
        assert err.orphaned == []
        assert err.in_doubt == [{"role": "brand_mirror", "calendar_id": MIRROR_BRAND_CAL}]
        assert err.to_dict()["in_doubt"] == err.in_doubt
        assert provider.appointments_for(MIRROR_BUSINESS_CAL) == {}
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_canonical_failure_writes_nothing(self, orchestrator, provider, store):
        provider.fail_writes.add(BUSINESS_CAL)
        with pytest.raises(ProviderError):
            await orchestrator.create(make_request())
        assert provider.write_log == []
        assert len(store) == 0


class TestConcurrentRequests:
    @pytest.mark.asyncio
    async def test_concurrent_creates_for_same_slot(self, orchestrator, provider, store):
        provider.read_delay["anna@acme.test"] = 0.01
        results = await asyncio.gather(
            orchestrator.create(make_request()),
            orchestrator.create(make_request(customer_name="John Roe")),
            return_exceptions=True,
        )
        assert sorted(type(r).__name__ for r in results) == ["Booking", "SlotUnavailableError"]
        assert len(store) == 1
        assert len(provider.appointments_for(BUSINESS_CAL)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_auto_assigned_creates(self, orchestrator, provider, store):
        provider.read_delay["bo@acme.test"] = 0.01
        results = await asyncio.gather(
            orchestrator.create(make_request(employee_id=None)),
            orchestrator.create(make_request(employee_id=None, customer_name="John Roe")),
            return_exceptions=True,
        )
        assert sum(isinstance(r, SlotUnavailableError) for r in results) == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_reschedule_races_create_for_same_slot(self, orchestrator, provider):
        booking = await orchestrator.create(make_request())
        provider.read_delay["anna@acme.test"] = 0.01
        results = await asyncio.gather(
            orchestrator.reschedule(booking.id, at(13)),
            orchestrator.create(make_request(start=at(13), customer_name="John Roe")),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], SlotUnavailableError)
        at_one = [
            spec for spec in provider.appointments_for(BUSINESS_CAL).values()
            if spec.start == at(13)
        ]
        assert len(at_one) == 1


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_releases_provider_writes(self, orchestrator, provider, notifier):
        booking = await orchestrator.create(make_request())
        cancelled = await orchestrator.cancel(booking.id, "Changed my mind")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "Changed my mind"
        assert provider.appointments_for(BUSINESS_CAL) == {}
        assert (await orchestrator.get(booking.id)).status == BookingStatus.CANCELLED
        assert notifier.sent[-1] == (NotificationKind.CANCELLED, booking.id)

    @pytest.mark.asyncio
    async def test_cancel_frees_the_slot(self, orchestrator):
        booking = await orchestrator.create(make_request())
        await orchestrator.cancel(booking.id)
        again = await orchestrator.create(make_request())
        assert again.start == booking.start

    @pytest.mark.asyncio
    async def test_double_cancel_rejected(self, orchestrator):
        booking = await orchestrator.create(make_request())
        await orchestrator.cancel(booking.id)
        with pytest.raises(AlreadyCancelledError):
            await orchestrator.cancel(booking.id)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.cancel("BK-MISSING")

    @pytest.mark.asyncio
    async def test_canonical_cancel_failure_keeps_booking(self, orchestrator, provider):
        booking = await orchestrator.create(make_request())
        provider.fail_deletes.add(BUSINESS_CAL)
        with pytest.raises(ProviderError):
            await orchestrator.cancel(booking.id)
        assert (await orchestrator.get(booking.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_mirror_delete_failure_is_tolerated(self, orchestrator, provider):
        booking = await orchestrator.create(make_request(brand_id="mirrored"))
        provider.fail_deletes.add("anna@acme.test")
        cancelled = await orchestrator.cancel(booking.id)
        assert cancelled.status == BookingStatus.CANCELLED
        assert provider.events_for(MIRROR_BRAND_CAL) == []
        assert len(provider.events_for("anna@acme.test")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_cancels_serialize(self, orchestrator):
        booking = await orchestrator.create(make_request())
        results = await asyncio.gather(
            orchestrator.cancel(booking.id),
            orchestrator.cancel(booking.id),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyCancelledError)


class TestReschedule:
    @pytest.mark.asyncio
    async def test_moves_booking_and_swaps_writes(self, orchestrator, provider, notifier):
        booking = await orchestrator.create(make_request())
        old_id = booking.canonical_ref.external_id

        moved = await orchestrator.reschedule(booking.id, at(13))
        assert moved.id == booking.id
        assert moved.start == at(13)
        assert moved.end == at(14)
        assert moved.status == BookingStatus.CONFIRMED
        assert moved.canonical_ref.external_id != old_id
        assert list(provider.appointments_for(BUSINESS_CAL)) == [moved.canonical_ref.external_id]
        assert notifier.sent[-1] == (NotificationKind.RESCHEDULED, booking.id)

    @pytest.mark.asyncio
    async def test_new_reservation_created_before_old_released(self, orchestrator, provider):
        booking = await orchestrator.create(make_request())
        provider.write_log.clear()
        await orchestrator.reschedule(booking.id, at(13))
        assert [op for op, _, _ in provider.write_log] == [
            "create_appointment", "cancel_appointment",
        ]

    @pytest.mark.asyncio
    async def test_busy_target_leaves_original(self, orchestrator, provider):
        booking = await orchestrator.create(make_request())
        provider.add_event("anna@acme.test", at(13), at(14))
        with pytest.raises(SlotUnavailableError):
            await orchestrator.reschedule(booking.id, at(13))

        current = await orchestrator.get(booking.id)
        assert current.start == at(9)
        assert current.canonical_ref.external_id in provider.appointments_for(BUSINESS_CAL)

    @pytest.mark.asyncio
    async def test_failed_new_write_keeps_original(self, orchestrator, provider):
        booking = await orchestrator.create(make_request())
        provider.fail_writes.add(BUSINESS_CAL)
        with pytest.raises(ProviderError):
            await orchestrator.reschedule(booking.id, at(13))

        current = await orchestrator.get(booking.id)
        assert current.start == at(9)
        assert current.provider_refs == booking.provider_refs
        assert len(provider.appointments_for(BUSINESS_CAL)) == 1

    @pytest.mark.asyncio
    async def test_cancelled_booking_cannot_be_rescheduled(self, orchestrator):
        booking = await orchestrator.create(make_request())
        await orchestrator.cancel(booking.id)
        with pytest.raises(AlreadyCancelledError):
            await orchestrator.reschedule(booking.id, at(13))

    @pytest.mark.asyncio
    async def test_reschedule_into_past_rejected(self, orchestrator):
        booking = await orchestrator.create(make_request())
        with pytest.raises(InvalidRequestError):
            await orchestrator.reschedule(booking.id, at(9, day=1))


class TestLookups:
    @pytest.mark.asyncio
    async def test_list_for_customer_case_insensitive(self, orchestrator):
        first = await orchestrator.create(make_request())
        await orchestrator.create(make_request(start=at(13), customer_email="x@example.com"))
        found = await orchestrator.list_for_customer("JANE@example.com")
        assert [b.id for b in found] == [first.id]

    @pytest.mark.asyncio
    async def test_list_for_staff_in_range(self, orchestrator):
        await orchestrator.create(make_request())
        later = await orchestrator.create(make_request(start=at(9, day=3)))
        found = await orchestrator.list_for_staff("anna", start=at(0, day=3), end=at(0, day=4))
        assert [b.id for b in found] == [later.id]

    @pytest.mark.asyncio
    async def test_list_for_unknown_staff(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.list_for_staff("zed")
