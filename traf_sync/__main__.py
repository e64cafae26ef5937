"""CLI entry point for the TrafToGoogleSync event creator."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from .authorize import main as authorize_main
from .cancellation import cancel_on_signals
from .config import (
    APP_NAME,
    DEFAULT_CALENDAR_ID,
    DEFAULT_TIME_ZONE,
    DEFAULT_USER_KEY,
    SAMPLE_DESCRIPTION,
    SAMPLE_SUMMARY,
    SWAP_EVENT_BOUNDARIES,
    default_credential_candidates,
    default_token_store_dir,
)
from .log import configure_logging
from .models import EventSpec
from .sync import EXIT_SUCCESS, SyncExecutor, exit_code_for, report
from .token_store import FileTokenStore


def _parse_datetime(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 timestamp: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="traf-sync",
        description=f"{APP_NAME} - Google Calendar event creator.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log diagnostics at DEBUG level.",
    )
    parser.add_argument(
        "--user-key",
        default=DEFAULT_USER_KEY,
        help=f"Token store key of the signed-in user (default: {DEFAULT_USER_KEY}).",
    )
    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser("sync", help="Create one calendar event (default).")
    sync_parser.add_argument("--summary", default=SAMPLE_SUMMARY, help="Event title.")
    sync_parser.add_argument("--description", default=SAMPLE_DESCRIPTION, help="Event description.")
    sync_parser.add_argument(
        "--start",
        type=_parse_datetime,
        default=None,
        help="ISO 8601 start; naive values are UTC (default: one hour from now).",
    )
    bounds = sync_parser.add_mutually_exclusive_group()
    bounds.add_argument("--end", type=_parse_datetime, default=None, help="ISO 8601 end.")
    bounds.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Event length in minutes when --end is not given (default: 60).",
    )
    sync_parser.add_argument(
        "--calendar-id",
        default=DEFAULT_CALENDAR_ID,
        help=f"Target calendar (default: {DEFAULT_CALENDAR_ID}).",
    )
    sync_parser.add_argument(
        "--time-zone",
        default=DEFAULT_TIME_ZONE,
        help=f"IANA time zone attached to the event (default: {DEFAULT_TIME_ZONE}).",
    )
    sync_parser.add_argument(
        "--swap-boundaries",
        action=argparse.BooleanOptionalAction,
        default=SWAP_EVENT_BOUNDARIES,
        help="Send the end as the remote start and the start as the remote end.",
    )

    subparsers.add_parser(
        "authorize",
        help="Run the interactive OAuth flow to grant Google Calendar access.",
    )
    logout_parser = subparsers.add_parser(
        "logout",
        help="Delete the stored Google OAuth token.",
    )
    logout_parser.add_argument(
        "--all",
        action="store_true",
        dest="all_users",
        help="Delete the stored tokens of every user key.",
    )

    return parser


def build_event_spec(args: argparse.Namespace, now: datetime | None = None) -> EventSpec:
    start = args.start or (now or datetime.now(timezone.utc)) + timedelta(hours=1)
    end = args.end or start + timedelta(minutes=args.duration)
    return EventSpec(summary=args.summary, start=start, end=end, description=args.description)


async def _run_sync(args: argparse.Namespace, spec: EventSpec) -> int:
    cancel = asyncio.Event()
    with cancel_on_signals(cancel):
        executor = SyncExecutor(
            candidates=default_credential_candidates(),
            store=FileTokenStore(default_token_store_dir()),
            user_key=args.user_key,
            time_zone=args.time_zone,
            swap_boundaries=args.swap_boundaries,
            cancel=cancel,
        )
        result = await executor.run(spec, args.calendar_id)
    report(result)
    return exit_code_for(result)


def _logout(user_key: str, all_users: bool = False) -> int:
    store = FileTokenStore(default_token_store_dir())
    if all_users:
        removed = store.clear()
        print(f"Removed {removed} stored token(s) from {store.directory}")
        return EXIT_SUCCESS
    if store.delete(user_key):
        print(f"Removed stored token {store.path_for(user_key)}")
    else:
        print(f"No stored token for '{user_key}'.")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args([*argv, "sync"])

    configure_logging("DEBUG" if args.verbose else None)
    print(f"{APP_NAME} - Google Calendar event creator")

    if args.command == "authorize":
        return authorize_main(args.user_key)
    if args.command == "logout":
        return _logout(args.user_key, args.all_users)

    if args.duration <= 0:
        parser.error("--duration must be a positive number of minutes")
    try:
        spec = build_event_spec(args)
    except ValidationError as exc:
        parser.error(str(exc))

    return asyncio.run(_run_sync(args, spec))


if __name__ == "__main__":
    sys.exit(main())
