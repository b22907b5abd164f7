"""Constraint checks for candidate slots.

Each candidate must keep the meeting's duration within tolerance and must
not collide with any attendee's busy time. Busy time for the whole run is
fetched with a single free/busy query, so validation is a barrier: every
candidate from every conflict set is gathered before it runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from meeting_resolver.calendar_client import FreeBusyReader
from meeting_resolver.constants import (
    DURATION_TOLERANCE_MINUTES,
    REASON_ATTENDEE_BUSY,
    REASON_DURATION_CHANGE,
    REASON_UNKNOWN_MEETING,
)
from meeting_resolver.errors import ExternalAPIError, ProposalValidationError
from meeting_resolver.logging import get_logger
from meeting_resolver.models import (
    BusyInterval,
    ConflictingMeeting,
    ProposedTimeSlot,
    ResolutionReport,
    ResolutionStatus,
    TimeWindow,
)
from meeting_resolver.oracle import OracleReply
from meeting_resolver.utils import intervals_overlap, timed_operation

log = get_logger("meeting_resolver.validation")


@dataclass
class PendingCandidate:
    """A candidate slot awaiting validation."""

    meeting: ConflictingMeeting
    slot: ProposedTimeSlot
    llm_proposal: dict[str, Any] | None = None


@dataclass
class ValidationResult:
    """Candidates that passed, and reports for those that did not."""

    accepted: list[PendingCandidate] = field(default_factory=list)
    rejected: list[ResolutionReport] = field(default_factory=list)


def invalid_report(
    meeting: ConflictingMeeting, reason: str, llm_proposal: dict[str, Any] | None = None
) -> ResolutionReport:
    return ResolutionReport(
        meeting_id=meeting.id,
        original_start_time=meeting.start_time,
        original_end_time=meeting.end_time,
        status=ResolutionStatus.INVALID_PROPOSAL,
        reason=reason,
        llm_proposal=llm_proposal,
    )


class ConstraintValidator:
    """Validates candidate slots against duration and free/busy constraints."""

    def __init__(
        self,
        free_busy: FreeBusyReader,
        *,
        tolerance_minutes: int = DURATION_TOLERANCE_MINUTES,
    ) -> None:
        self._free_busy = free_busy
        self._tolerance = tolerance_minutes

    def check_duration(self, meeting: ConflictingMeeting, slot: ProposedTimeSlot) -> None:
        """Raise if the slot changes the meeting's length by more than the tolerance.

        Raises:
            ProposalValidationError: With reason ``"Duration change too large"``.
        """
        if abs(meeting.span_minutes - slot.duration_minutes) > self._tolerance:
            raise ProposalValidationError(REASON_DURATION_CHANGE)

    def check_membership(
        self, conflict_set: list[ConflictingMeeting], reply: OracleReply | None
    ) -> list[ResolutionReport]:
        """Reports for oracle proposals naming meetings outside the set."""
        if reply is None:
            return []
        known = {m.id for m in conflict_set}
        return [
            ResolutionReport(
                meeting_id=proposal.meeting_id,
                original_start_time=None,
                original_end_time=None,
                status=ResolutionStatus.INVALID_PROPOSAL,
                reason=REASON_UNKNOWN_MEETING,
                llm_proposal=reply.raw,
            )
            for proposal in reply.proposals
            if proposal.meeting_id not in known
        ]

    async def validate(self, pending: list[PendingCandidate]) -> ValidationResult:
        """Validate every pending candidate of the run.

        Raises:
            ExternalAPIError: If the free/busy query fails. No partial
                result is returned in that case.
        """
        result = ValidationResult()
        survivors: list[PendingCandidate] = []
        for candidate in pending:
            try:
                self.check_duration(candidate.meeting, candidate.slot)
            except ProposalValidationError as exc:
                log.info(
                    "candidate_rejected",
                    meeting_id=candidate.meeting.id,
                    reason=str(exc),
                )
                result.rejected.append(
                    invalid_report(candidate.meeting, str(exc), candidate.llm_proposal)
                )
                continue
            survivors.append(candidate)

        if not survivors:
            return result

        busy = await self._query_busy(survivors)

        for candidate in survivors:
            if self._attendee_busy(candidate, busy):
                log.info(
                    "candidate_rejected",
                    meeting_id=candidate.meeting.id,
                    reason=REASON_ATTENDEE_BUSY,
                )
                result.rejected.append(
                    invalid_report(candidate.meeting, REASON_ATTENDEE_BUSY, candidate.llm_proposal)
                )
            else:
                result.accepted.append(candidate)
        return result

    async def _query_busy(
        self, candidates: list[PendingCandidate]
    ) -> dict[str, list[BusyInterval]]:
        emails = list(dict.fromkeys(e for c in candidates for e in c.meeting.attendee_emails))
        window = TimeWindow(
            start=min(c.slot.start for c in candidates),
            end=max(c.slot.end for c in candidates),
        )
        try:
            async with timed_operation(
                "free_busy_query", log=log, attendees=len(emails), candidates=len(candidates)
            ):
                return await self._free_busy.query_free_busy(emails, window)
        except ExternalAPIError:
            log.error("free_busy_failed", attendees=len(emails))
            raise
        except Exception as exc:
            log.error("free_busy_failed", attendees=len(emails), error=str(exc))
            raise ExternalAPIError(f"CalendarAPIError: freebusy query failed: {exc}") from exc

    @staticmethod
    def _attendee_busy(
        candidate: PendingCandidate, busy: dict[str, list[BusyInterval]]
    ) -> bool:
        slot = candidate.slot
        return any(
            intervals_overlap(slot.start, slot.end, interval.start, interval.end)
            for email in candidate.meeting.attendee_emails
            for interval in busy.get(email, [])
        )
