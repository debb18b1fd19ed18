"""
Command-line entry point for the booking core.

Runs against an in-memory calendar backend seeded from the settings file,
or against Microsoft Graph with ``--graph`` (requires Azure AD credentials).

Usage:
    python main.py availability --brand acme --service consult --days 3
    python main.py book --brand acme --service consult --start 2026-03-02T09:00:00+01:00 \\
        --name "Jane Doe" --email jane@example.com
    python main.py demo --brand acme --service consult
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone

from brand_booking.app import BookingSystem, build_booking_system
from brand_booking.config import settings
from brand_booking.directory import Directory
from brand_booking.errors import BookingError

logger = logging.getLogger(__name__)

GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"


def _parse_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO-8601 timestamp: {value!r}") from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _print_json(data) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


async def _availability(system: BookingSystem, args: argparse.Namespace) -> None:
    now = datetime.now(timezone.utc)
    start = args.start or now
    slots = await system.resolve_availability(
        args.brand, args.service, args.employee,
        start=start, end=start + timedelta(days=args.days), limit=args.limit,
    )
    if not slots:
        print(f"{DIM}No availability in the next {args.days} day(s).{RESET}")
        return
    _print_json([slot.to_dict() for slot in slots])


async def _book(system: BookingSystem, args: argparse.Namespace) -> None:
    booking = await system.create_booking({
        "brand_id": args.brand,
        "service_id": args.service,
        "employee_id": args.employee,
        "customer_name": args.name,
        "customer_email": args.email,
        "customer_phone": args.phone,
        "start": args.start,
    })
    print(f"{GREEN}Booking {booking.id} confirmed{RESET}")
    _print_json(booking.to_response())


async def _demo(system: BookingSystem, args: argparse.Namespace) -> None:
    """Book the next free slot, move it to a later non-overlapping one, then cancel it."""
    now = datetime.now(timezone.utc)
    slots = await system.resolve_availability(
        args.brand, args.service, args.employee,
        start=now, end=now + timedelta(days=settings.scheduling.lookahead_days),
    )
    later = [slot for slot in slots if slot.start >= slots[0].end] if slots else []
    if not later:
        print(f"{DIM}Not enough availability to run the demo.{RESET}")
        return

    booking = await system.create_booking({
        "brand_id": args.brand,
        "service_id": args.service,
        "employee_id": args.employee,
        "customer_name": "Demo Customer",
        "customer_email": "demo@example.com",
        "start": slots[0].start,
    })
    print(f"{GREEN}Booked {booking.id} at {booking.start.isoformat()} with {booking.employee_id}{RESET}")

    booking = await system.reschedule_booking(booking.id, later[0].start)
    print(f"{GREEN}Rescheduled {booking.id} to {booking.start.isoformat()}{RESET}")

    booking = await system.cancel_booking(booking.id, "Demo finished")
    print(f"{GREEN}Cancelled {booking.id}{RESET}")

    _print_json((await system.booking_stats()).to_dict())


COMMANDS = {"availability": _availability, "book": _book, "demo": _demo}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-brand appointment booking.")
    parser.add_argument(
        "--graph", action="store_true",
        help="Use Microsoft Graph instead of the in-memory calendar backend.",
    )
    parser.add_argument(
        "--settings", type=str, default=settings.settings_file,
        help="Path to the brands/employees settings file.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)
    for name in COMMANDS:
        cmd = sub.add_parser(name)
        cmd.add_argument("--brand", required=True)
        cmd.add_argument("--service", required=True)
        cmd.add_argument("--employee", default=None, help="Employee id (default: any).")

    avail = sub.choices["availability"]
    avail.add_argument("--start", type=_parse_datetime, default=None)
    avail.add_argument("--days", type=int, default=7)
    avail.add_argument("--limit", type=int, default=None)

    book = sub.choices["book"]
    book.add_argument("--start", type=_parse_datetime, required=True)
    book.add_argument("--name", required=True)
    book.add_argument("--email", required=True)
    book.add_argument("--phone", default=None)
    return parser


async def _run(args: argparse.Namespace) -> int:
    system = build_booking_system(
        directory=Directory.from_file(args.settings), use_graph=args.graph
    )
    try:
        await COMMANDS[args.command](system, args)
    except BookingError as exc:
        print(f"{RED}{exc.code}: {exc.message}{RESET}")
        return 1
    finally:
        await system.close()
    return 0


def main() -> None:
    args = build_parser().parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
