"""Candidate replacement slots for meetings that need to move.

Two sources feed candidates: the slot proposed by the ranking oracle for a
meeting, and an optional slot finder that searches attendee availability.
Finding nothing is not an error; the meeting ends up unresolved.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from meeting_resolver.calendar_client import FreeBusyReader
from meeting_resolver.constants import DEFAULT_TIMEZONE, MAX_FOUND_SLOTS, SLOT_STEP_MINUTES
from meeting_resolver.logging import get_logger
from meeting_resolver.models import ConflictingMeeting, ProposedTimeSlot, TimeWindow
from meeting_resolver.oracle import OracleReply
from meeting_resolver.utils import intervals_overlap

log = get_logger("meeting_resolver.slots")


class SlotFinder(Protocol):
    """Availability search returning scored slots."""

    async def find_slots(
        self, attendees: Sequence[str], window: TimeWindow, duration_minutes: int
    ) -> list[ProposedTimeSlot]:
        """Return candidate slots for ``attendees`` inside ``window``."""
        ...


class CandidateSlotProvider:
    """Collects candidate slots for a meeting from the configured sources."""

    def __init__(self, slot_finder: SlotFinder | None = None) -> None:
        self._slot_finder = slot_finder

    def from_oracle(
        self, meeting: ConflictingMeeting, reply: OracleReply | None
    ) -> list[ProposedTimeSlot]:
        """The oracle's slot for ``meeting``, if it proposed one.

        Only the first proposal naming the meeting is used.
        """
        if reply is None:
            return []
        for proposal in reply.proposals:
            if proposal.meeting_id == meeting.id:
                return [proposal.to_slot()]
        return []

    async def from_finder(
        self, meeting: ConflictingMeeting, window: TimeWindow
    ) -> list[ProposedTimeSlot]:
        """Slots returned by the slot finder, or none when no finder is set."""
        if self._slot_finder is None:
            return []
        slots = await self._slot_finder.find_slots(
            meeting.attendee_emails, window, meeting.duration_minutes
        )
        log.debug("slots_found", meeting_id=meeting.id, count=len(slots))
        return list(slots)

    async def candidates_for(
        self,
        meeting: ConflictingMeeting,
        window: TimeWindow,
        reply: OracleReply | None = None,
    ) -> list[ProposedTimeSlot]:
        """All candidates for a meeting, oracle slot first."""
        return self.from_oracle(meeting, reply) + await self.from_finder(meeting, window)


class FreeSlotFinder:
    """Slot finder that walks a window in fixed steps against free/busy data.

    Slots must fall inside working hours on a weekday in ``timezone`` and be
    free for every attendee. Each slot is scored by how close it starts to
    the beginning of the search window, so earlier slots rank higher.
    """

    def __init__(
        self,
        free_busy: FreeBusyReader,
        *,
        step_minutes: int = SLOT_STEP_MINUTES,
        working_hours: tuple[int, int] = (9, 17),
        timezone: str = DEFAULT_TIMEZONE,
        max_slots: int = MAX_FOUND_SLOTS,
    ) -> None:
        if step_minutes <= 0:
            raise ValueError("step_minutes must be > 0")
        self._free_busy = free_busy
        self._step = timedelta(minutes=step_minutes)
        self._day_start, self._day_end = working_hours
        self._tz = ZoneInfo(timezone)
        self._max_slots = max_slots

    async def find_slots(
        self, attendees: Sequence[str], window: TimeWindow, duration_minutes: int
    ) -> list[ProposedTimeSlot]:
        if duration_minutes <= 0 or not attendees:
            return []

        busy_map = await self._free_busy.query_free_busy(list(attendees), window)
        busy = [interval for email in attendees for interval in busy_map.get(email, [])]
        length = timedelta(minutes=duration_minutes)

        slots: list[ProposedTimeSlot] = []
        start = self._first_boundary(window.start)
        while start + length <= window.end:
            end = start + length
            if self._in_working_hours(start, end) and not any(
                intervals_overlap(start, end, b.start, b.end) for b in busy
            ):
                hours_away = (start - window.start).total_seconds() / 3600
                slots.append(
                    ProposedTimeSlot(start=start, end=end, score=round(100 / (1 + hours_away), 4))
                )
            start += self._step

        slots.sort(key=lambda s: s.effective_score, reverse=True)
        return slots[: self._max_slots]

    def _first_boundary(self, moment: datetime) -> datetime:
        """First step boundary at or after ``moment``, counted from its midnight."""
        midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        steps = -(-(moment - midnight) // self._step)
        return midnight + steps * self._step

    def _in_working_hours(self, start: datetime, end: datetime) -> bool:
        local_start = start.astimezone(self._tz)
        local_end = end.astimezone(self._tz)
        if local_start.weekday() >= 5:
            return False
        day_open = local_start.replace(hour=self._day_start, minute=0, second=0, microsecond=0)
        if self._day_end >= 24:
            day_close = day_open.replace(hour=0) + timedelta(days=1)
        else:
            day_close = local_start.replace(hour=self._day_end, minute=0, second=0, microsecond=0)
        return day_open <= local_start and local_end <= day_close
