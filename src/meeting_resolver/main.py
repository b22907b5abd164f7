"""Command-line entry point for the meeting resolver."""

import argparse
import asyncio
import json
import sys
from typing import Any

from meeting_resolver.calendar_client import GoogleCalendarClient
from meeting_resolver.config import Settings, get_settings
from meeting_resolver.engine import ConflictResolutionEngine
from meeting_resolver.errors import ResolverError
from meeting_resolver.logging import get_logger, setup_logging
from meeting_resolver.oracle import GeminiOracle
from meeting_resolver.rules import HttpRulesStore, RulesStore, StaticRulesStore
from meeting_resolver.service import build_window, eligible_users, resolve_meeting_conflicts
from meeting_resolver.slots import FreeSlotFinder

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_engine(settings: Settings) -> ConflictResolutionEngine:
    """Wire the concrete adapters described by ``settings``.

    Raises:
        ValueError: If no Google access token is configured.
    """
    if settings.google_access_token is None:
        raise ValueError("RESOLVER_GOOGLE_ACCESS_TOKEN is required")

    calendar = GoogleCalendarClient(
        settings.google_access_token.get_secret_value(),
        timeout=settings.calendar_timeout,
        time_zone=settings.default_timezone,
    )

    oracle = None
    if settings.gemini_api_key is not None:
        oracle = GeminiOracle(
            settings.gemini_api_key.get_secret_value(),
            model=settings.gemini_model,
            temperature=settings.oracle_temperature,
            max_output_tokens=settings.oracle_max_output_tokens,
        )

    rules_store: RulesStore
    if settings.rules_service_url:
        token = settings.rules_service_token
        rules_store = HttpRulesStore(
            settings.rules_service_url, token.get_secret_value() if token else ""
        )
    else:
        rules_store = StaticRulesStore()

    slot_finder = FreeSlotFinder(
        calendar,
        step_minutes=settings.slot_step_minutes,
        working_hours=(settings.working_hours_start, settings.working_hours_end),
        timezone=settings.default_timezone,
    )

    return ConflictResolutionEngine(
        calendar,
        calendar,
        oracle=oracle,
        rules_store=rules_store,
        slot_finder=slot_finder,
        booking_service=calendar,
        settings=settings,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meeting-resolver",
        description="Detect and resolve meeting conflicts across user calendars",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("identify", "List conflicting meetings"),
        ("propose", "Propose new slots without booking"),
        ("apply", "Book the assigned slots"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("users", nargs="+", help="User email addresses")
        cmd.add_argument("--from", dest="time_from", help="Window start (ISO-8601)")
        cmd.add_argument("--to", dest="time_to", help="Window end (ISO-8601)")
    return parser


async def main(args: argparse.Namespace) -> int:
    """Run one CLI command and print its JSON result."""
    log = get_logger("meeting_resolver.main")
    settings = get_settings()
    log.info("starting_meeting_resolver", command=args.command, environment=settings.environment)

    try:
        engine = build_engine(settings)
    except ValueError as exc:
        log.error("configuration_error", error=str(exc))
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return EXIT_CONFIG

    output: dict[str, Any]
    if args.command == "propose":
        output = await resolve_meeting_conflicts(
            args.users, args.time_from, args.time_to, engine=engine, settings=settings
        )
        print(json.dumps(output, indent=2))
        return EXIT_OK if output["status"] == 200 else EXIT_FAILED

    users = eligible_users(args.users, settings.allowed_domains)
    try:
        window = build_window(args.time_from, args.time_to, settings)
        if args.command == "identify":
            conflicts, message = await engine.identify_conflicts(users, window)
            output = {"message": message, "conflicts": [m.to_dict() for m in conflicts]}
        else:
            resolved = await engine.resolve(users, window)
            output = {"resolved": [r.to_dict() for r in resolved]}
    except (ResolverError, ValueError) as exc:
        log.error("command_failed", command=args.command, error=str(exc))
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return EXIT_FAILED

    print(json.dumps(output, indent=2))
    return EXIT_OK


def run() -> None:
    """Run the application."""
    setup_logging()
    args = build_parser().parse_args()
    sys.exit(asyncio.run(main(args)))


if __name__ == "__main__":
    run()
