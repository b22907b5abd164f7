"""Prompts sent to the ranking oracle."""

from __future__ import annotations

import json
from typing import Any

from meeting_resolver.models import ConflictingMeeting, Event, TimeWindow

SYSTEM_PROMPT = """You are an intelligent meeting conflict resolution assistant.
Your role is to analyze meeting conflicts and propose rescheduling solutions that:
- Respect user-defined conflict resolution rules and preferences
- Avoid creating new conflicts with existing meetings
- Preserve meeting durations within acceptable bounds (within {tolerance} minutes of original)
- Consider the full calendar context to find optimal time slots
- Minimize disruption to all attendees

You must respond with valid JSON only, following the exact schema specified in the user prompt."""

RESPONSE_FORMAT = """{
  "priorityOrder": ["meeting id, most important first"],
  "meetingsToReschedule": [
    {
      "meetingId": "string (meeting ID from conflict set)",
      "newStartTime": "ISO 8601 datetime string (e.g., 2025-03-15T10:00:00-07:00)",
      "newEndTime": "ISO 8601 datetime string (e.g., 2025-03-15T11:00:00-07:00)"
    }
  ]
}"""


def build_system_prompt(tolerance_minutes: int) -> str:
    """System prompt for conflict-set prioritisation."""
    return SYSTEM_PROMPT.format(tolerance=tolerance_minutes)


def build_user_prompt(
    conflict_set: list[ConflictingMeeting],
    rules_by_email: dict[str, list[str]],
    window: TimeWindow,
    *,
    calendar_context: list[Event] | None = None,
    tolerance_minutes: int,
) -> str:
    """User prompt describing one conflict set, attendee rules and the window."""
    attendees = list(dict.fromkeys(e for m in conflict_set for e in m.attendee_emails))
    rules = [{"email": email, "rules": rules_by_email.get(email, [])} for email in attendees]

    sections = [
        "Analyze the following meeting conflict set, rank the meetings by importance "
        "and propose rescheduling solutions.",
        "TIME FRAME CONTEXT:\n"
        "Consider only rescheduling options within the following window:\n"
        f"- windowStart: {window.start.isoformat()}\n"
        f"- windowEnd: {window.end.isoformat()}",
        "CONFLICT SET (meetings that overlap in time and share attendees):\n"
        + _dump([m.to_dict() for m in conflict_set]),
        "USER RULES (conflict resolution preferences per attendee):\n" + _dump(rules),
    ]

    if calendar_context:
        sections.append(
            "FULL CALENDAR CONTEXT (all meetings for the period; "
            "proposed times must not conflict with these):\n"
            + _dump([e.to_dict() for e in calendar_context])
        )

    sections.append(
        "INSTRUCTIONS:\n"
        "1. Rank the meetings in the conflict set, most important first, using the user rules\n"
        "2. Identify available time slots that do not conflict with existing meetings\n"
        "3. Propose new start and end times for the meetings that should move, "
        "keeping them inside the window\n"
        f"4. Preserve meeting durations (within {tolerance_minutes} minutes of original)"
    )
    sections.append(
        "RESPONSE FORMAT:\n"
        "You must respond with ONLY valid JSON in this exact format:\n"
        f"{RESPONSE_FORMAT}\n\n"
        "Include only meetings that should be rescheduled. If no rescheduling is needed "
        "or possible, return an empty array for meetingsToReschedule."
    )
    return "\n\n".join(sections)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)
