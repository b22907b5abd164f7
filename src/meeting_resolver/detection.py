"""Calendar conflict detection.

Filters events down to those shared by a roster of users and finds
pairs that overlap in time.
"""

from __future__ import annotations

from collections.abc import Iterable

from meeting_resolver.logging import get_logger
from meeting_resolver.models import Attendee, ConflictingMeeting, ConflictPair, Event

log = get_logger("meeting_resolver.detection")


def filter_events(events: Iterable[Event], required: Iterable[str]) -> list[Event]:
    """Keep events whose participants plus owner include every required email.

    The same event read from several calendars is kept once, first copy wins.
    An empty ``required`` set yields no events.
    """
    required_set = set(required)
    if not required_set:
        return []

    kept: list[Event] = []
    seen: set[str] = set()
    for event in events:
        people = set(event.participants)
        if event.owner:
            people.add(event.owner)
        if not required_set <= people:
            continue
        if event.event_id and event.event_id in seen:
            continue
        seen.add(event.event_id)
        kept.append(event)
    return kept


def to_conflicting_meeting(event: Event) -> ConflictingMeeting:
    """Normalise an event for resolution.

    The first participant is treated as the organizer.
    """
    return ConflictingMeeting(
        id=event.event_id,
        title=event.subject,
        description=event.description,
        organizer=event.participants[0] if event.participants else "unknown",
        attendees=tuple(Attendee(email=email) for email in event.participants),
        start_time=event.start,
        end_time=event.end,
        duration_minutes=event.minutes,
    )


class ConflictDetector:
    """Detects time overlaps between calendar events."""

    def detect_conflicts(self, events: Iterable[Event]) -> list[ConflictPair]:
        """Detect all pairwise overlaps.

        Events are sorted by start time; the inner scan stops at the first
        event starting at or after the current event's end, since no later
        event can overlap it.

        Args:
            events: Events to check.

        Returns:
            Overlapping pairs with their overlap window, earlier event first.
        """
        ordered = sorted(events, key=lambda e: e.start)
        conflicts: list[ConflictPair] = []

        for i, current in enumerate(ordered):
            for other in ordered[i + 1 :]:
                if other.start >= current.end:
                    break
                conflict = self._check_overlap(current, other)
                if conflict:
                    conflicts.append(conflict)

        log.debug(
            "conflicts_detected",
            event_count=len(ordered),
            conflict_count=len(conflicts),
        )
        return conflicts

    def detect_for_users(
        self, events: Iterable[Event], users: Iterable[str]
    ) -> list[ConflictPair]:
        """Filter to events shared by all ``users``, then detect overlaps."""
        return self.detect_conflicts(filter_events(events, users))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_overlap(self, event_a: Event, event_b: Event) -> ConflictPair | None:
        if event_a.event_id and event_a.event_id == event_b.event_id:
            return None
        overlap_start = max(event_a.start, event_b.start)
        overlap_end = min(event_a.end, event_b.end)
        if overlap_start >= overlap_end:
            return None
        return ConflictPair(
            first=event_a,
            second=event_b,
            overlap_start=overlap_start,
            overlap_end=overlap_end,
        )
