"""Shared test fixtures and helpers."""

from datetime import datetime, timezone

import pytest

from brand_booking.booking.orchestrator import BookingOrchestrator
from brand_booking.booking.state_machine import BookingStateMachine
from brand_booking.booking.store import InMemoryBookingStore
from brand_booking.config import NotificationConfig, ProviderConfig, SchedulingConfig
from brand_booking.directory import Directory
from brand_booking.notifications import LoggingNotifier
from brand_booking.providers.gateway import ProviderGateway
from brand_booking.providers.memory import InMemoryCalendarProvider
from brand_booking.scheduling.availability import AvailabilityResolver
from brand_booking.schemas.booking_schema import BookingRequest

# Sunday 1 March 2026, noon UTC. Monday the 2nd is the usual test day.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

BRAND_CAL = "brand@acme.test"
BUSINESS_CAL = "biz@acme.test"

SETTINGS = {
    "brands": [
        {
            "id": "acme",
            "name": "Acme Advisory",
            "calendar_id": BRAND_CAL,
            "business_id": BUSINESS_CAL,
            "hours_source": "fixed",
            "timezone": "UTC",
            "services": [
                {"id": "consult", "name": "Consultation", "duration": "PT1H"},
                {"id": "quick", "name": "Quick Call", "duration_minutes": 30},
            ],
        },
        {
            "id": "mirrored",
            "name": "Mirrored Brand",
            "calendar_id": "brand@mirrored.test",
            "business_id": "biz@mirrored.test",
            "hours_source": "fixed",
            "timezone": "UTC",
            "mirror_to_brand_calendar": True,
            "mirror_to_staff_calendar": True,
            "services": [{"id": "consult", "name": "Consultation", "duration_minutes": 60}],
        },
        {
            "id": "beta",
            "name": "Beta Clinic",
            "calendar_id": "brand@beta.test",
            "hours_source": "pattern",
            "timezone": "UTC",
            "services": [{"id": "checkup", "name": "Check-up", "duration_minutes": 60}],
        },
    ],
    "employees": [
        {
            "id": "anna",
            "name": "Anna Berg",
            "email": "anna@acme.test",
            "primary_calendar_id": "anna@acme.test",
            "brands": ["acme", "mirrored"],
            "staff_member_id": "staff-anna",
        },
        {
            "id": "bo",
            "name": "Bo Holm",
            "email": "bo@acme.test",
            "primary_calendar_id": "bo@acme.test",
            "brands": ["acme"],
            "staff_member_id": "staff-bo",
        },
        {
            "id": "carla",
            "name": "Carla Dahl",
            "email": "carla@acme.test",
            "primary_calendar_id": "carla@acme.test",
            "brands": ["acme"],
        },
        {
            "id": "dana",
            "name": "Dana Lund",
            "email": "dana@beta.test",
            "primary_calendar_id": "dana@beta.test",
            "brands": ["beta"],
        },
    ],
}


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    """UTC instant on a March 2026 day (default: Monday the 2nd)."""
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def make_request(**overrides) -> BookingRequest:
    data = {
        "brand_id": "acme",
        "service_id": "consult",
        "employee_id": "anna",
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "customer_phone": "+45 12 34 56 78",
        "start": at(9),
    }
    data.update(overrides)
    return BookingRequest(**data)


@pytest.fixture
def directory():
    return Directory.from_dict(SETTINGS)


@pytest.fixture
def provider():
    return InMemoryCalendarProvider()


@pytest.fixture
def scheduling_config():
    return SchedulingConfig(
        slot_step_minutes=30,
        default_day_start="09:00",
        default_day_end="17:00",
        business_timezone="UTC",
        exclude_today=False,
        tentative_blocks=True,
        max_slots_returned=20,
        lookahead_days=14,
    )


@pytest.fixture
def provider_config():
    return ProviderConfig(
        max_concurrency=4,
        timeout_seconds=1.0,
        read_retries=0,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def gateway(provider, provider_config):
    return ProviderGateway(provider, provider_config)


@pytest.fixture
def resolver(directory, gateway, scheduling_config):
    return AvailabilityResolver(directory, gateway, scheduling_config, clock=lambda: NOW)


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def notifier():
    return LoggingNotifier(NotificationConfig(enabled=True, sender="", organization_name="Acme"))


@pytest.fixture
def orchestrator(directory, resolver, gateway, store, notifier):
    return BookingOrchestrator(directory, resolver, gateway, store, notifier)


@pytest.fixture
def state_machine():
    return BookingStateMachine()
