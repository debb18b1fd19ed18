"""
Customer notifications for booking confirmations, reschedules, and cancellations.

Notifiers are best-effort: the orchestrator calls them after a booking is
already stored and swallows any failure, so a mail outage never undoes a
reservation.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from brand_booking.config import NotificationConfig
from brand_booking.schemas.booking_schema import Booking

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


_SUBJECTS = {
    NotificationKind.CONFIRMED: "Booking Confirmation",
    NotificationKind.RESCHEDULED: "Booking Rescheduled",
    NotificationKind.CANCELLED: "Booking Cancelled",
}

_LEADS = {
    NotificationKind.CONFIRMED: "Your appointment has been confirmed.",
    NotificationKind.RESCHEDULED: "Your appointment has been moved to a new time.",
    NotificationKind.CANCELLED: "Your appointment has been cancelled.",
}


@dataclass
class NotificationContext:
    """Display names resolved from the directory for one booking."""

    brand_name: str
    service_name: str
    employee_name: str
    timezone: str = "UTC"


def _local_start(booking: Booking, tz: str) -> str:
    return booking.start.astimezone(ZoneInfo(tz)).strftime("%A %d %B %Y at %H:%M")


def format_email_subject(kind: NotificationKind, context: NotificationContext) -> str:
    return f"{_SUBJECTS[kind]} - {context.brand_name}"


def format_email_html(
    kind: NotificationKind,
    booking: Booking,
    context: NotificationContext,
    organization_name: str,
) -> str:
    """Render the HTML body sent to the customer."""
    esc = html.escape
    lines = [
        f"<h2>{esc(_SUBJECTS[kind])}</h2>",
        f"<p>Dear {esc(booking.customer_name)},</p>",
        f"<p>{esc(_LEADS[kind])}</p>",
        f"<p><strong>Service:</strong> {esc(context.service_name)}</p>",
        f"<p><strong>Date &amp; Time:</strong> {esc(_local_start(booking, context.timezone))}</p>",
        f"<p><strong>With:</strong> {esc(context.employee_name)}</p>",
        f"<p><strong>Reference:</strong> {esc(booking.id)}</p>",
    ]
    if kind is NotificationKind.CANCELLED and booking.cancellation_reason:
        lines.append(f"<p><strong>Reason:</strong> {esc(booking.cancellation_reason)}</p>")
    lines.append(f"<p>Thank you for choosing {esc(organization_name)}.</p>")
    return "\n".join(lines)


def format_sms(
    kind: NotificationKind,
    booking: Booking,
    context: NotificationContext,
    organization_name: str,
) -> str:
    when = _local_start(booking, context.timezone)
    if kind is NotificationKind.CANCELLED:
        return f"{organization_name}: Your appointment on {when} has been cancelled."
    if kind is NotificationKind.RESCHEDULED:
        return f"{organization_name}: Your appointment has moved to {when}. Check email for details."
    return f"{organization_name}: Your appointment on {when} is confirmed. Check email for details."


class Notifier(ABC):
    """Delivers booking notifications to the customer."""

    def __init__(self, config: Optional[NotificationConfig] = None) -> None:
        self.config = config or NotificationConfig()

    @abstractmethod
    async def notify(
        self, kind: NotificationKind, booking: Booking, context: NotificationContext
    ) -> None:
        """Send one notification. May raise; callers treat failures as non-fatal."""


class LoggingNotifier(Notifier):
    """Writes the rendered messages to the log instead of sending them."""

    def __init__(self, config: Optional[NotificationConfig] = None) -> None:
        super().__init__(config)
        self.sent: list[tuple[NotificationKind, str]] = []

    async def notify(
        self, kind: NotificationKind, booking: Booking, context: NotificationContext
    ) -> None:
        org = self.config.organization_name
        subject = format_email_subject(kind, context)
        logger.info("Email would be sent to %s: %s", booking.customer_email, subject)
        logger.debug("%s", format_email_html(kind, booking, context, org))
        if booking.customer_phone:
            logger.info(
                "SMS would be sent to %s: %s",
                booking.customer_phone, format_sms(kind, booking, context, org),
            )
        self.sent.append((kind, booking.id))


class GraphMailNotifier(Notifier):
    """Sends the HTML email through Microsoft Graph ``sendMail``.

    SMS has no delivery channel here and is only logged.
    """

    def __init__(self, provider, config: Optional[NotificationConfig] = None) -> None:
        super().__init__(config)
        if not self.config.sender:
            raise ValueError("NOTIFICATION_SENDER is required for Graph mail notifications")
        self._provider = provider

    async def notify(
        self, kind: NotificationKind, booking: Booking, context: NotificationContext
    ) -> None:
        org = self.config.organization_name
        await self._provider.send_mail(
            self.config.sender,
            booking.customer_email,
            format_email_subject(kind, context),
            format_email_html(kind, booking, context, org),
        )
        logger.info("%s email sent for booking %s", kind.value.capitalize(), booking.id)
        if booking.customer_phone:
            logger.info(
                "SMS not sent to %s (no SMS channel): %s",
                booking.customer_phone, format_sms(kind, booking, context, org),
            )
