"""Request-level entrypoint returning status-coded responses."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from meeting_resolver.config import Settings, get_settings
from meeting_resolver.engine import ConflictResolutionEngine
from meeting_resolver.logging import get_logger
from meeting_resolver.models import TimeWindow, parse_datetime

log = get_logger("meeting_resolver.service")


def eligible_users(users: Iterable[str], allowed_domains: Sequence[str]) -> list[str]:
    """Users whose email domain is allowed, deduplicated in input order.

    An empty ``allowed_domains`` allows every well-formed address.
    """
    domains = {d.lower().lstrip("@") for d in allowed_domains if d}
    eligible: list[str] = []
    for user in users:
        email = (user or "").strip()
        if "@" not in email or email in eligible:
            continue
        if domains and email.rsplit("@", 1)[1].lower() not in domains:
            continue
        eligible.append(email)
    return eligible


def build_window(
    time_frame_from: str | datetime | None,
    time_frame_to: str | datetime | None,
    settings: Settings,
) -> TimeWindow:
    """Window from the optional bounds; missing ones follow the configured default.

    Raises:
        ValueError: If a bound is unparseable or the end is not after the start.
    """
    start = parse_datetime(time_frame_from) if time_frame_from else None
    default = TimeWindow.next_hours(settings.default_window_hours, now=start)
    end = parse_datetime(time_frame_to) if time_frame_to else default.end
    start = default.start
    if end <= start:
        raise ValueError("time frame end must be after its start")
    return TimeWindow(start=start, end=end)


async def resolve_meeting_conflicts(
    users: Sequence[str],
    time_frame_from: str | datetime | None = None,
    time_frame_to: str | datetime | None = None,
    *,
    engine: ConflictResolutionEngine,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Propose resolutions for the given users' shared conflicts.

    Returns:
        A response dict with ``status`` 400 (bad request), 200 (success)
        or 500 (the run failed).
    """
    settings = settings or get_settings()

    valid_users = eligible_users(users, settings.allowed_domains)
    if not valid_users:
        log.warning("no_eligible_users", requested=len(users))
        return {
            "status": 400,
            "message": "No eligible users found in the request",
            "error": "No valid users",
        }

    try:
        window = build_window(time_frame_from, time_frame_to, settings)
    except ValueError as exc:
        log.warning("invalid_time_frame", error=str(exc))
        return {"status": 400, "message": "Invalid time frame", "error": str(exc)}

    execution_id = str(uuid.uuid4())
    log.info(
        "resolution_run_started",
        execution_id=execution_id,
        users=len(valid_users),
        window=window.to_dict(),
    )

    try:
        outcome = await engine.propose_resolutions(valid_users, window)
    except Exception as exc:
        log.exception("resolution_run_failed", execution_id=execution_id, error=str(exc))
        return {
            "status": 500,
            "execution_id": execution_id,
            "message": "Conflict resolution failed",
            "error": str(exc),
        }

    summary = outcome.summary
    if summary.total_conflicts:
        message = (
            f"Processed {summary.total_conflicts} conflicting meeting(s): "
            f"{summary.valid_proposals} valid, {summary.invalid_proposals} invalid proposal(s)"
        )
    else:
        message = "No meeting conflicts found"

    log.info("resolution_run_completed", execution_id=execution_id, **summary.to_dict())
    return {
        "status": 200,
        "execution_id": execution_id,
        "message": message,
        "result": outcome.to_dict(),
    }
