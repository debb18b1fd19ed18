"""Shared utilities used across the booking core."""

import re
from datetime import datetime, timezone

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("0412 345 678")
        '0412345678'
        >>> normalize_phone("+45 (12) 34-56-78")
        '+4512345678'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def parse_iso_duration(value: str) -> int:
    """Parse an ISO-8601 duration such as ``PT1H30M`` into whole minutes.

    Days count as 24 hours; seconds are dropped.

    Examples:
        >>> parse_iso_duration("PT1H30M")
        90
        >>> parse_iso_duration("PT45M")
        45
    """
    match = _ISO_DURATION.match(value.strip().upper()) if value else None
    if not match or value.strip().upper() in ("P", "PT"):
        raise ValueError(f"Invalid ISO-8601 duration: {value!r}")
    days = int(match.group("days") or 0)
    hours = int(match.group("hours") or 0)
    minutes = int(match.group("minutes") or 0)
    return days * 24 * 60 + hours * 60 + minutes


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to an aware UTC instant.

    Naive values are taken to already be UTC, which is how the calendar
    backend returns them when asked for UTC output.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse a textual timestamp (``Z`` suffix, offset, or naive UTC) into UTC.

    Graph returns up to seven fractional digits, which ``fromisoformat``
    rejects on older interpreters, so the fraction is trimmed to six.
    """
    text = value.strip().replace("Z", "+00:00")
    match = re.match(r"^(.*\.\d{6})\d+(.*)$", text)
    if match:
        text = match.group(1) + match.group(2)
    return to_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime) -> str:
    """Format an instant as the UTC textual form sent to the backend."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%S")
