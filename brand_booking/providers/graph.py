"""
Microsoft Graph / Microsoft Bookings calendar provider.

Maps the provider interface onto Graph endpoints:

- ``/users/{mailbox}/calendar/calendarView``     -> list_events
- ``/solutions/bookingBusinesses/{id}``           -> get_business_hours
- ``/users/{mailbox}/calendar/events``            -> create_event / delete_event
- ``/solutions/bookingBusinesses/{id}/appointments`` -> create / cancel appointment
- ``/users/{sender}/sendMail``                    -> send_mail (notifications)

Authentication uses the client-credentials flow through MSAL. The token
source is injectable so tests can run against ``httpx.MockTransport``.
"""

import asyncio
import logging
from datetime import datetime, time
from typing import Any, Awaitable, Callable, Optional

import httpx

from brand_booking.config import GraphConfig
from brand_booking.errors import ProviderError
from brand_booking.providers.base import AppointmentSpec, CalendarProvider, EventSpec
from brand_booking.schemas.availability_schema import (
    WEEKDAYS,
    CalendarEvent,
    DayHours,
    TimeWindow,
)
from brand_booking.utils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
EVENT_FIELDS = "id,subject,start,end,showAs,type,isCancelled,seriesMasterId,recurrence"
PAGE_SIZE = 200

TokenProvider = Callable[[], Awaitable[str]]


def _parse_clock(value: str) -> time:
    """Parse Graph's ``HH:MM:SS.fffffff`` wall-clock strings."""
    hh, mm, *rest = value.split(":")
    seconds = int(float(rest[0])) if rest else 0
    return time(int(hh), int(mm), seconds)


def _parse_event(raw: dict[str, Any]) -> CalendarEvent:
    recurrence = raw.get("recurrence") or {}
    pattern = recurrence.get("pattern") or {}
    if pattern.get("type") == "daily":
        days = list(WEEKDAYS)
    elif pattern.get("type") == "weekly":
        days = [day.lower() for day in pattern.get("daysOfWeek") or []]
    else:
        days = []
    return CalendarEvent(
        id=raw["id"],
        subject=raw.get("subject") or "",
        start=parse_timestamp(raw["start"]["dateTime"]),
        end=parse_timestamp(raw["end"]["dateTime"]),
        show_as=raw.get("showAs") or "busy",
        event_type=raw.get("type"),
        is_cancelled=bool(raw.get("isCancelled")),
        series_master_id=raw.get("seriesMasterId"),
        recurrence_days=days,
    )


def _parse_business_hours(raw: list[dict[str, Any]]) -> list[DayHours]:
    hours: list[DayHours] = []
    for day in raw:
        windows = []
        for slot in day.get("timeSlots") or []:
            start = _parse_clock(slot["startTime"])
            end = _parse_clock(slot["endTime"])
            if end == time(0, 0):
                end = time.max
            if end > start:
                windows.append(TimeWindow(start_time=start, end_time=end))
        if windows:
            hours.append(DayHours(day_of_week=day["day"], windows=windows))
    return hours


class GraphCalendarProvider(CalendarProvider):
    """Calendar backend talking to Microsoft Graph over ``httpx``."""

    def __init__(
        self,
        config: GraphConfig,
        client: Optional[httpx.AsyncClient] = None,
        token_provider: Optional[TokenProvider] = None,
    ) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(base_url=config.api_base, timeout=30.0)
        self._token_provider = token_provider or self._msal_token
        self._msal_app = None

    @property
    def provider_name(self) -> str:
        return "microsoft-graph"

    # ------------------------------------------------------------------ #
    # Authentication
    # ------------------------------------------------------------------ #

    async def _msal_token(self) -> str:
        if not self._config.is_configured:
            raise ProviderError(
                "Azure AD credentials not configured "
                "(AZURE_TENANT_ID, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET)",
                operation="authenticate",
            )
        if self._msal_app is None:
            import msal

            self._msal_app = msal.ConfidentialClientApplication(
                client_id=self._config.client_id,
                client_credential=self._config.client_secret,
                authority=f"https://login.microsoftonline.com/{self._config.tenant_id}",
            )
        # MSAL caches the app token and is blocking, so run it off the loop.
        result = await asyncio.to_thread(
            self._msal_app.acquire_token_for_client, scopes=GRAPH_SCOPES
        )
        token = result.get("access_token")
        if not token:
            raise ProviderError(
                f"Token request failed: {result.get('error_description') or result.get('error')}",
                operation="authenticate",
            )
        return token

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Optional[dict[str, Any]]:
        token = await self._token_provider()
        request_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            request_headers.update(headers)
        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=request_headers
            )
        except httpx.TimeoutException:
            raise ProviderError(
                f"{operation}: timeout contacting Microsoft Graph", operation, timed_out=True
            ) from None
        except httpx.RequestError as exc:
            raise ProviderError(f"{operation}: network error: {exc}", operation) from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"{operation}: Graph returned HTTP {response.status_code}: {response.text[:300]}",
                operation,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def list_events(
        self, calendar_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        url: Optional[str] = f"/users/{calendar_id}/calendar/calendarView"
        params: Optional[dict[str, Any]] = {
            "startDateTime": format_timestamp(start) + "Z",
            "endDateTime": format_timestamp(end) + "Z",
            "$select": EVENT_FIELDS,
            "$top": PAGE_SIZE,
        }
        events: list[CalendarEvent] = []
        while url:
            payload = await self._request(
                "GET", url, "list_events", params=params,
                headers={"Prefer": 'outlook.timezone="UTC"'},
            ) or {}
            events.extend(_parse_event(raw) for raw in payload.get("value", []))
            url = payload.get("@odata.nextLink")
            params = None
        logger.debug("Fetched %d events from %s", len(events), calendar_id)
        return events

    async def get_business_hours(self, business_id: str) -> list[DayHours]:
        payload = await self._request(
            "GET", f"/solutions/bookingBusinesses/{business_id}", "get_business_hours"
        ) or {}
        return _parse_business_hours(payload.get("businessHours") or [])

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def create_event(self, calendar_id: str, spec: EventSpec) -> str:
        body: dict[str, Any] = {
            "subject": spec.subject,
            "body": {"contentType": "HTML", "content": spec.body},
            "start": {"dateTime": format_timestamp(spec.start), "timeZone": "UTC"},
            "end": {"dateTime": format_timestamp(spec.end), "timeZone": "UTC"},
            "showAs": spec.show_as,
            "attendees": [
                {"emailAddress": {"address": email, "name": name}, "type": "required"}
                for email, name in spec.attendees
            ],
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 15,
        }
        if spec.location:
            body["location"] = {"displayName": spec.location}
        payload = await self._request(
            "POST", f"/users/{calendar_id}/calendar/events", "create_event", json=body
        ) or {}
        return payload["id"]

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._request(
            "DELETE", f"/users/{calendar_id}/calendar/events/{event_id}", "delete_event"
        )

    async def create_appointment(self, business_id: str, spec: AppointmentSpec) -> str:
        body = {
            "@odata.type": "#microsoft.graph.bookingAppointment",
            "serviceId": spec.service_id,
            "staffMemberIds": spec.staff_member_ids,
            "startDateTime": {"dateTime": format_timestamp(spec.start), "timeZone": "UTC"},
            "endDateTime": {"dateTime": format_timestamp(spec.end), "timeZone": "UTC"},
            "customers": [{
                "@odata.type": "#microsoft.graph.bookingCustomerInformation",
                "name": spec.customer_name,
                "emailAddress": spec.customer_email,
                "phone": spec.customer_phone or "",
            }],
            "customerNotes": spec.notes or "",
            "optOutOfCustomerEmail": False,
        }
        payload = await self._request(
            "POST",
            f"/solutions/bookingBusinesses/{business_id}/appointments",
            "create_appointment",
            json=body,
        ) or {}
        return payload["id"]

    async def cancel_appointment(
        self, business_id: str, appointment_id: str, message: str
    ) -> None:
        await self._request(
            "POST",
            f"/solutions/bookingBusinesses/{business_id}/appointments/{appointment_id}/cancel",
            "cancel_appointment",
            json={"cancellationMessage": message},
        )

    async def send_mail(
        self, sender: str, recipient: str, subject: str, html: str
    ) -> None:
        await self._request(
            "POST",
            f"/users/{sender}/sendMail",
            "send_mail",
            json={
                "message": {
                    "subject": subject,
                    "body": {"contentType": "HTML", "content": html},
                    "toRecipients": [{"emailAddress": {"address": recipient}}],
                },
                "saveToSentItems": True,
            },
        )

    async def close(self) -> None:
        await self._client.aclose()
