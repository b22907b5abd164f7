"""Conflict resolution pipeline.

detect -> group -> prioritise (per set, concurrently) -> collect candidates
-> validate (one free/busy barrier for the run) -> greedy assignment
(sequential, no I/O) -> report.

Each call to ``propose_resolutions`` or ``resolve`` is independent: the
booked-slot registry and all intermediate results live only for that call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from meeting_resolver.assigner import BookedSlotRegistry, assign_slots
from meeting_resolver.calendar_client import BookingService, CalendarReader, FreeBusyReader
from meeting_resolver.config import Settings, get_settings
from meeting_resolver.constants import REASON_NO_CANDIDATES, REASON_SLOT_TAKEN
from meeting_resolver.detection import ConflictDetector
from meeting_resolver.errors import OracleProcessingError
from meeting_resolver.grouping import group_meetings, group_pairs
from meeting_resolver.logging import get_logger
from meeting_resolver.models import (
    ConflictingMeeting,
    Event,
    MeetingCandidates,
    ProposalOutcome,
    ProposedTimeSlot,
    ResolutionReport,
    ResolutionStatus,
    ResolvedMeeting,
    TimeWindow,
)
from meeting_resolver.oracle import RankingOracle
from meeting_resolver.priority import PriorityDecision, PriorityResolver
from meeting_resolver.reporting import ResolutionReporter
from meeting_resolver.rules import RulesStore, collect_rules
from meeting_resolver.slots import CandidateSlotProvider, SlotFinder
from meeting_resolver.utils import timed_operation
from meeting_resolver.validation import ConstraintValidator, PendingCandidate

log = get_logger("meeting_resolver.engine")


@dataclass
class _MeetingRequest:
    """A meeting that needs a new slot, with its raw candidates."""

    meeting: ConflictingMeeting
    pending: list[PendingCandidate] = field(default_factory=list)


@dataclass
class _RunState:
    conflict_sets: list[list[ConflictingMeeting]]
    resolved: list[ResolvedMeeting] = field(default_factory=list)
    reports: list[ResolutionReport] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    proposals: dict[tuple[str, ProposedTimeSlot], dict[str, Any] | None] = field(
        default_factory=dict
    )
    had_candidates: set[str] = field(default_factory=set)


class ConflictResolutionEngine:
    """Detects meeting conflicts and proposes or books replacement slots."""

    def __init__(
        self,
        calendar_reader: CalendarReader,
        free_busy_reader: FreeBusyReader,
        *,
        oracle: RankingOracle | None = None,
        rules_store: RulesStore | None = None,
        slot_finder: SlotFinder | None = None,
        booking_service: BookingService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._calendar = calendar_reader
        self._rules_store = rules_store
        self._booking = booking_service
        self._detector = ConflictDetector()
        self._priority = PriorityResolver(
            oracle,
            use_oracle=self._settings.use_oracle,
            tolerance_minutes=self._settings.duration_tolerance_minutes,
        )
        self._slots = CandidateSlotProvider(slot_finder)
        self._validator = ConstraintValidator(
            free_busy_reader, tolerance_minutes=self._settings.duration_tolerance_minutes
        )
        self._reporter = ResolutionReporter()

    def default_window(self) -> TimeWindow:
        """Window from now spanning the configured number of hours."""
        return TimeWindow.next_hours(self._settings.default_window_hours)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def identify_conflicts(
        self, users: Sequence[str], window: TimeWindow | None = None
    ) -> tuple[list[ConflictingMeeting], str]:
        """Detect conflicts without proposing anything.

        Returns:
            The conflicting meetings and a human-readable summary message.
        """
        window = window or self.default_window()
        conflict_sets, _ = await self._detect(users, window)
        conflicts = [m for s in conflict_sets for m in s]
        if not conflicts:
            message = "No meeting conflicts found"
        else:
            message = (
                f"Found {len(conflicts)} conflicting meeting(s) "
                f"across {len(conflict_sets)} conflict set(s)"
            )
        return conflicts, message

    async def propose_resolutions(
        self,
        users: Sequence[str],
        window: TimeWindow | None = None,
        *,
        identified_conflicts: Sequence[ConflictingMeeting] | None = None,
        events: Sequence[Event] | None = None,
    ) -> ProposalOutcome:
        """Propose non-conflicting slots without booking them.

        Accepted slots are reported as ``no_action_taken``.

        Args:
            users: Users whose shared meetings are resolved.
            window: Time window; defaults to the next configured hours.
            identified_conflicts: Meetings already known to conflict. When
                given, calendars are not scanned for conflicts.
            events: Calendar events to use instead of reading calendars.

        Raises:
            ExternalAPIError: If the free/busy query fails.
        """
        window = window or self.default_window()
        state = await self._run(users, window, identified_conflicts, events)

        reports = list(state.reports)
        for result in state.resolved:
            reports.append(self._proposal_report(result, state))

        outcome = self._reporter.report(state.conflict_sets, reports, state.errors)
        log.info("resolution_proposed", **outcome.summary.to_dict(), errors=len(outcome.errors))
        return outcome

    async def resolve(
        self,
        users: Sequence[str],
        window: TimeWindow | None = None,
        *,
        identified_conflicts: Sequence[ConflictingMeeting] | None = None,
        events: Sequence[Event] | None = None,
    ) -> list[ResolvedMeeting]:
        """Assign slots and book every scheduled meeting.

        A failed booking leaves that meeting unresolved and does not stop
        the others.

        Raises:
            ValueError: If no booking service is configured.
            ExternalAPIError: If the free/busy query fails.
        """
        if self._booking is None:
            raise ValueError("a booking service is required to apply resolutions")
        window = window or self.default_window()
        state = await self._run(users, window, identified_conflicts, events)

        for result in state.resolved:
            slot = result.rescheduled_to
            if result.status != ResolutionStatus.SCHEDULED or slot is None:
                continue
            try:
                await self._booking.schedule_meeting(
                    summary=result.meeting.title,
                    description=result.meeting.description,
                    start=slot.start,
                    end=slot.end,
                    attendees=result.meeting.attendee_emails,
                )
            except Exception as exc:
                log.error("booking_failed", meeting_id=result.meeting.id, error=str(exc))
                result.status = ResolutionStatus.UNRESOLVED
                result.rescheduled_to = None

        # Meetings whose every candidate was rejected never reached the assigner.
        assigned = {r.meeting.id for r in state.resolved}
        by_id = {m.id: m for s in state.conflict_sets for m in s}
        rejected_ids = dict.fromkeys(
            r.meeting_id
            for r in state.reports
            if r.meeting_id in by_id and r.meeting_id not in assigned
        )
        rejected = [
            ResolvedMeeting(meeting=by_id[mid], status=ResolutionStatus.INVALID_PROPOSAL)
            for mid in rejected_ids
        ]
        return state.resolved + rejected

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    async def _run(
        self,
        users: Sequence[str],
        window: TimeWindow,
        identified_conflicts: Sequence[ConflictingMeeting] | None,
        events: Sequence[Event] | None,
    ) -> _RunState:
        async with timed_operation("resolution_run", log=log, users=len(users)):
            conflict_sets, context = await self._detect(users, window, identified_conflicts, events)
            state = _RunState(conflict_sets=conflict_sets)
            if not conflict_sets:
                return state

            involved = [
                email
                for conflict_set in conflict_sets
                for meeting in conflict_set
                for email in [*meeting.attendee_emails, meeting.organizer]
            ]
            rules = await collect_rules(self._rules_store, involved)

            decisions = await self._prioritize(conflict_sets, rules, window, context, state)
            requests = await self._collect_candidates(conflict_sets, decisions, window, state)

            validation = await self._validator.validate([p for r in requests for p in r.pending])
            state.reports.extend(validation.rejected)

            accepted: dict[str, list[ProposedTimeSlot]] = {}
            for candidate in validation.accepted:
                accepted.setdefault(candidate.meeting.id, []).append(candidate.slot)

            # Meetings whose every candidate was rejected are reported only as invalid.
            entries = [
                MeetingCandidates(meeting=r.meeting, candidates=accepted.get(r.meeting.id, []))
                for r in requests
                if not r.pending or r.meeting.id in accepted
            ]
            state.resolved = assign_slots(entries, BookedSlotRegistry())
            return state

    async def _detect(
        self,
        users: Sequence[str],
        window: TimeWindow,
        identified_conflicts: Sequence[ConflictingMeeting] | None = None,
        events: Sequence[Event] | None = None,
    ) -> tuple[list[list[ConflictingMeeting]], list[Event]]:
        context = list(events) if events is not None else []
        if identified_conflicts:
            return group_meetings(identified_conflicts), context

        if events is None:
            context = await self._calendar.list_events(users, window)
        pairs = self._detector.detect_for_users(context, users)
        return group_pairs(pairs), context

    async def _prioritize(
        self,
        conflict_sets: list[list[ConflictingMeeting]],
        rules: dict[str, list[str]],
        window: TimeWindow,
        context: list[Event],
        state: _RunState,
    ) -> list[PriorityDecision]:
        results = await asyncio.gather(
            *(
                self._priority.resolve(s, rules, window, calendar_context=context or None)
                for s in conflict_sets
            ),
            return_exceptions=True,
        )

        decisions: list[PriorityDecision] = []
        for conflict_set, result in zip(conflict_sets, results, strict=True):
            if isinstance(result, Exception):
                message = str(OracleProcessingError(str(result)))
                # Keep going with the input order for this set.
                log.warning("prioritization_failed", error=message)
                result = PriorityDecision(ordered=list(conflict_set), error=message)
            elif isinstance(result, BaseException):
                raise result
            if result.error:
                state.errors.append(result.error)
            decisions.append(result)
        return decisions

    async def _collect_candidates(
        self,
        conflict_sets: list[list[ConflictingMeeting]],
        decisions: list[PriorityDecision],
        window: TimeWindow,
        state: _RunState,
    ) -> list[_MeetingRequest]:
        per_set = await asyncio.gather(
            *(
                self._candidates_for_set(s, d, window, state)
                for s, d in zip(conflict_sets, decisions, strict=True)
            )
        )
        return [request for requests in per_set for request in requests]

    async def _candidates_for_set(
        self,
        conflict_set: list[ConflictingMeeting],
        decision: PriorityDecision,
        window: TimeWindow,
        state: _RunState,
    ) -> list[_MeetingRequest]:
        if len(conflict_set) < 2:
            return []

        reply = decision.reply
        state.reports.extend(self._validator.check_membership(conflict_set, reply))

        if reply is not None:
            proposed = {p.meeting_id for p in reply.proposals}
            movers = [m for m in decision.ordered if m.id in proposed]
        else:
            # The top-priority meeting keeps its slot.
            movers = decision.ordered[1:]

        raw = reply.raw if reply is not None else None
        requests: list[_MeetingRequest] = []
        for meeting in movers:
            request = _MeetingRequest(meeting=meeting)
            for slot in self._slots.from_oracle(meeting, reply):
                state.proposals[(meeting.id, slot)] = raw
                request.pending.append(PendingCandidate(meeting=meeting, slot=slot, llm_proposal=raw))
            try:
                found = await self._slots.from_finder(meeting, window)
            except Exception as exc:
                log.warning("slot_finder_failed", meeting_id=meeting.id, error=str(exc))
                state.errors.append(f"SlotFinderError: {exc}")
                found = []
            for slot in found:
                state.proposals.setdefault((meeting.id, slot), None)
                request.pending.append(PendingCandidate(meeting=meeting, slot=slot))
            if request.pending:
                state.had_candidates.add(meeting.id)
            requests.append(request)
        return requests

    @staticmethod
    def _proposal_report(result: ResolvedMeeting, state: _RunState) -> ResolutionReport:
        meeting = result.meeting
        slot = result.rescheduled_to
        if slot is not None and result.status == ResolutionStatus.SCHEDULED:
            return ResolutionReport(
                meeting_id=meeting.id,
                original_start_time=meeting.start_time,
                original_end_time=meeting.end_time,
                proposed_new_start_time=slot.start,
                proposed_new_end_time=slot.end,
                status=ResolutionStatus.NO_ACTION_TAKEN,
                llm_proposal=state.proposals.get((meeting.id, slot)),
            )
        reason = REASON_SLOT_TAKEN if meeting.id in state.had_candidates else REASON_NO_CANDIDATES
        return ResolutionReport(
            meeting_id=meeting.id,
            original_start_time=meeting.start_time,
            original_end_time=meeting.end_time,
            status=ResolutionStatus.UNRESOLVED,
            reason=reason,
        )
