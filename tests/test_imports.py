"""Tests for import chains and module integrity.

Ensures all public modules can be imported without errors and
that re-exports from __init__.py files work correctly.
"""

import logging


class TestSchemaImports:
    def test_import_schema_package(self):
        from brand_booking.schemas import (
            Booking, BookingRequest, BookingStatus, Brand, CalendarEvent, TimeSlot,
        )
        assert BookingStatus.CONFIRMED == "confirmed"
        assert Booking is not None

    def test_time_slot_to_dict(self):
        from brand_booking.schemas import TimeSlot
        from tests.conftest import at

        data = TimeSlot(at(9), at(10)).with_staff(["anna"]).to_dict()
        assert data["duration"] == 60
        assert data["staff_ids"] == ["anna"]


class TestPackageImports:
    def test_import_booking_package(self):
        from brand_booking.booking import (
            BookingOrchestrator, BookingState, BookingStateMachine, InMemoryBookingStore,
        )
        assert BookingStateMachine().current_state == BookingState.REQUESTED

    def test_import_scheduling_package(self):
        from brand_booking.scheduling import AvailabilityResolver, generate_slots
        assert callable(generate_slots)

    def test_import_providers_package(self):
        from brand_booking.providers import InMemoryCalendarProvider, ProviderGateway
        assert InMemoryCalendarProvider().provider_name == "memory"

    def test_graph_provider_imports(self):
        from brand_booking.providers.graph import GRAPH_SCOPES, GraphCalendarProvider
        assert GRAPH_SCOPES == ["https://graph.microsoft.com/.default"]

    def test_version(self):
        import brand_booking
        assert brand_booking.__version__ == "1.0.0"


class TestConfigImport:
    def test_import_config(self):
        from brand_booking.config import settings
        assert settings.scheduling.slot_step_minutes >= 1
        assert settings.provider.max_concurrency >= 1
        assert settings.settings_file.endswith(".json")


class TestErrorTaxonomy:
    def test_status_codes(self):
        from brand_booking.errors import (
            AlreadyCancelledError, InvalidRequestError, NoStaffAvailableError,
            NotFoundError, ProviderError, SlotUnavailableError,
        )
        assert NotFoundError("brand", "x").status_code == 404
        assert InvalidRequestError("bad").status_code == 400
        assert SlotUnavailableError().retriable
        assert NoStaffAvailableError().retriable
        assert AlreadyCancelledError("BK-1").status_code == 409
        assert not ProviderError("down").retriable

    def test_to_dict(self):
        from brand_booking.errors import SlotUnavailableError
        data = SlotUnavailableError().to_dict()
        assert data["error"] == "slot_unavailable"
        assert data["retriable"] is True


class TestLoggingContext:
    def test_request_id_attached(self, caplog):
        from brand_booking.logging_context import get_request_id, get_request_logger, set_request_id

        logger = get_request_logger("brand_booking.test")
        set_request_id("REQ-test1234")
        with caplog.at_level(logging.INFO, logger="brand_booking.test"):
            logger.info("hello")
        assert get_request_id() == "REQ-test1234"
        assert caplog.records[-1].request_id == "REQ-test1234"

    def test_generated_request_id(self):
        from brand_booking.logging_context import set_request_id
        assert set_request_id().startswith("REQ-")

    def test_filter_added_once(self):
        from brand_booking.logging_context import get_request_logger
        logger = get_request_logger("brand_booking.test.once")
        get_request_logger("brand_booking.test.once")
        assert len(logger.filters) == 1
