"""Priority ordering of meetings inside a conflict set.

Index 0 of the resolved order is the most important meeting. The ranking
oracle may reorder the set and may also propose new times; if it fails in
any way the set keeps its input order and the failure is recorded.
"""

from __future__ import annotations

from dataclasses import dataclass

from meeting_resolver.constants import DURATION_TOLERANCE_MINUTES
from meeting_resolver.errors import OracleProcessingError
from meeting_resolver.logging import get_logger
from meeting_resolver.models import ConflictingMeeting, Event, TimeWindow
from meeting_resolver.oracle import (
    OracleReply,
    RankingOracle,
    parse_oracle_reply,
    parse_reschedule_proposal,
)
from meeting_resolver.prompts import build_system_prompt, build_user_prompt

log = get_logger("meeting_resolver.priority")


@dataclass
class PriorityDecision:
    """Priority order for one conflict set, plus any oracle proposal."""

    ordered: list[ConflictingMeeting]
    reply: OracleReply | None = None
    error: str | None = None

    @property
    def used_fallback(self) -> bool:
        return self.error is not None


def apply_priority_order(
    meetings: list[ConflictingMeeting], order: list[str]
) -> list[ConflictingMeeting]:
    """Move meetings named in ``order`` to the front, in that order.

    Unknown and repeated ids are ignored; unnamed meetings keep their
    relative input order after the named ones.
    """
    by_id = {m.id: m for m in meetings}
    front: list[ConflictingMeeting] = []
    for meeting_id in order:
        meeting = by_id.pop(meeting_id, None)
        if meeting is not None:
            front.append(meeting)
    return front + [m for m in meetings if m.id in by_id]


class PriorityResolver:
    """Orders conflict sets, optionally with the ranking oracle."""

    def __init__(
        self,
        oracle: RankingOracle | None = None,
        *,
        use_oracle: bool = True,
        tolerance_minutes: int = DURATION_TOLERANCE_MINUTES,
    ) -> None:
        self._oracle = oracle
        self._use_oracle = use_oracle and oracle is not None
        self._tolerance = tolerance_minutes

    async def resolve(
        self,
        conflict_set: list[ConflictingMeeting],
        rules_by_email: dict[str, list[str]],
        window: TimeWindow,
        *,
        calendar_context: list[Event] | None = None,
    ) -> PriorityDecision:
        """Order one conflict set.

        Sets with fewer than two meetings, and any set when the oracle is
        disabled, keep their input order without an oracle call.
        """
        meetings = list(conflict_set)
        if len(meetings) <= 1 or not self._use_oracle or self._oracle is None:
            return PriorityDecision(ordered=meetings)

        user_prompt = build_user_prompt(
            meetings,
            rules_by_email,
            window,
            calendar_context=calendar_context,
            tolerance_minutes=self._tolerance,
        )
        system_prompt = build_system_prompt(self._tolerance)

        try:
            try:
                raw = await self._oracle.complete(user_prompt, system_prompt)
            except OracleProcessingError:
                raise
            except Exception as exc:
                raise OracleProcessingError(str(exc)) from exc
            reply = parse_reschedule_proposal(parse_oracle_reply(raw))
        except OracleProcessingError as exc:
            log.warning(
                "oracle_failed",
                meeting_ids=[m.id for m in meetings],
                error=str(exc),
            )
            return PriorityDecision(ordered=meetings, error=str(exc))

        ordered = apply_priority_order(meetings, reply.priority_order)
        log.debug(
            "conflict_set_prioritized",
            order=[m.id for m in ordered],
            proposals=len(reply.proposals),
        )
        return PriorityDecision(ordered=ordered, reply=reply)
