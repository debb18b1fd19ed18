"""Booking data models."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from brand_booking.utils import normalize_phone, to_utc

# Validation thresholds
MIN_NAME_LENGTH = 2
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ProviderRef(BaseModel):
    """Correlation id of one provider-side write made for a booking."""

    kind: Literal["appointment", "event"]
    role: Literal["canonical", "brand_mirror", "staff_mirror"]
    calendar_id: str
    external_id: str


class BookingRequest(BaseModel):
    """Validated booking request data.

    ``end`` is optional; when omitted it is derived from the service duration.
    ``employee_id`` is optional; when omitted a staff member is auto-assigned.
    """

    brand_id: str
    service_id: str
    employee_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    start: datetime
    end: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("customer_name")
    @classmethod
    def _name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < MIN_NAME_LENGTH:
            raise ValueError("customer name is too short")
        return value

    @field_validator("customer_email")
    @classmethod
    def _email(cls, value: str) -> str:
        value = value.strip()
        if not _EMAIL.match(value):
            raise ValueError(f"invalid email address: {value!r}")
        return value

    @field_validator("customer_phone")
    @classmethod
    def _phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        cleaned = normalize_phone(value)
        digits = cleaned.lstrip("+")
        if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            raise ValueError(f"invalid phone number: {value!r}")
        return cleaned

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _ordered(self) -> "BookingRequest":
        if self.end is not None and self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class Booking(BaseModel):
    """A reservation owned by the orchestrator."""

    id: str
    brand_id: str
    service_id: str
    employee_id: str
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    start: datetime
    end: datetime
    status: BookingStatus = BookingStatus.PENDING
    provider_refs: list[ProviderRef] = Field(default_factory=list)
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def canonical_ref(self) -> Optional[ProviderRef]:
        return next((ref for ref in self.provider_refs if ref.role == "canonical"), None)

    @property
    def external_ids(self) -> list[str]:
        return [ref.external_id for ref in self.provider_refs]

    def to_response(self) -> dict[str, Any]:
        """Echo of the booking for the transport layer."""
        return {
            "booking_id": self.id,
            "brand_id": self.brand_id,
            "service_id": self.service_id,
            "employee_id": self.employee_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "status": self.status.value,
        }
