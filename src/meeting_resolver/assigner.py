"""Greedy, priority-ordered slot assignment.

Meetings are handled strictly in priority order (index 0 first). Each one
takes its best-scoring candidate that does not overlap anything already
booked in this run. Bookings are never revised, so a lower-priority meeting
can never displace a higher-priority one.
"""

from __future__ import annotations

from collections.abc import Sequence

from meeting_resolver.logging import get_logger
from meeting_resolver.models import (
    BookedSlot,
    MeetingCandidates,
    ProposedTimeSlot,
    ResolutionStatus,
    ResolvedMeeting,
)
from meeting_resolver.utils import intervals_overlap

log = get_logger("meeting_resolver.assigner")


class BookedSlotRegistry:
    """Append-only record of intervals booked during one run.

    No two entries overlap.
    """

    def __init__(self) -> None:
        self._slots: list[BookedSlot] = []

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def slots(self) -> tuple[BookedSlot, ...]:
        return tuple(self._slots)

    def collides(self, slot: ProposedTimeSlot) -> bool:
        """Whether ``slot`` overlaps any booked interval."""
        return any(
            intervals_overlap(slot.start, slot.end, booked.start, booked.end)
            for booked in self._slots
        )

    def book(self, slot: ProposedTimeSlot, meeting_id: str) -> BookedSlot:
        """Record a booking.

        Raises:
            ValueError: If the slot overlaps an existing booking.
        """
        if self.collides(slot):
            raise ValueError(f"slot for meeting {meeting_id} overlaps an existing booking")
        booked = BookedSlot(start=slot.start, end=slot.end, meeting_id=meeting_id)
        self._slots.append(booked)
        return booked


def rank_candidates(candidates: Sequence[ProposedTimeSlot]) -> list[ProposedTimeSlot]:
    """Candidates by score descending; equal scores keep input order."""
    return sorted(candidates, key=lambda slot: slot.effective_score, reverse=True)


def assign_slots(
    meetings: Sequence[MeetingCandidates], registry: BookedSlotRegistry
) -> list[ResolvedMeeting]:
    """Assign each meeting its best free candidate, in priority order.

    Args:
        meetings: Meetings with validated candidates, highest priority first.
        registry: Bookings made so far in this run; extended in place.

    Returns:
        One ``ResolvedMeeting`` per input meeting, in input order.
    """
    resolved: list[ResolvedMeeting] = []
    for entry in meetings:
        result = ResolvedMeeting(meeting=entry.meeting)
        for slot in rank_candidates(entry.candidates):
            if registry.collides(slot):
                continue
            registry.book(slot, entry.meeting.id)
            result.status = ResolutionStatus.SCHEDULED
            result.rescheduled_to = slot
            break
        log.debug(
            "meeting_assigned",
            meeting_id=entry.meeting.id,
            status=result.status.value,
            candidates=len(entry.candidates),
        )
        resolved.append(result)
    return resolved
