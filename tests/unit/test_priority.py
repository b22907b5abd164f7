"""Unit tests for conflict set prioritisation."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from meeting_resolver.errors import OracleProcessingError
from meeting_resolver.models import Attendee, ConflictingMeeting, TimeWindow
from meeting_resolver.priority import PriorityResolver, apply_priority_order

WINDOW = TimeWindow(start=datetime(2025, 3, 10, tzinfo=UTC), end=datetime(2025, 3, 11, tzinfo=UTC))


def make_meeting(meeting_id: str) -> ConflictingMeeting:
    return ConflictingMeeting(
        id=meeting_id,
        title=meeting_id,
        organizer="a@x.com",
        attendees=[Attendee("a@x.com")],
        start_time=datetime(2025, 3, 10, 9, tzinfo=UTC),
        end_time=datetime(2025, 3, 10, 10, tzinfo=UTC),
        duration_minutes=60,
    )


def make_oracle(reply: str | Exception) -> MagicMock:
    oracle = MagicMock()
    if isinstance(reply, Exception):
        oracle.complete = AsyncMock(side_effect=reply)
    else:
        oracle.complete = AsyncMock(return_value=reply)
    return oracle


def ids(meetings: list[ConflictingMeeting]) -> list[str]:
    return [m.id for m in meetings]


class TestApplyPriorityOrder:
    """Tests for apply_priority_order."""

    def test_named_meetings_move_to_front(self):
        meetings = [make_meeting("a"), make_meeting("b"), make_meeting("c")]
        assert ids(apply_priority_order(meetings, ["c", "a"])) == ["c", "a", "b"]

    def test_unknown_and_repeated_ids_ignored(self):
        meetings = [make_meeting("a"), make_meeting("b")]
        assert ids(apply_priority_order(meetings, ["x", "b", "b"])) == ["b", "a"]

    def test_empty_order_keeps_input(self):
        meetings = [make_meeting("a"), make_meeting("b")]
        assert ids(apply_priority_order(meetings, [])) == ["a", "b"]


class TestPriorityResolver:
    """Tests for PriorityResolver.resolve."""

    @pytest.mark.asyncio
    async def test_singleton_skips_oracle(self):
        oracle = make_oracle("{}")
        decision = await PriorityResolver(oracle).resolve([make_meeting("a")], {}, WINDOW)

        assert ids(decision.ordered) == ["a"]
        assert decision.reply is None
        oracle.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_given_order_mode_skips_oracle(self):
        oracle = make_oracle("{}")
        resolver = PriorityResolver(oracle, use_oracle=False)
        decision = await resolver.resolve([make_meeting("a"), make_meeting("b")], {}, WINDOW)

        assert ids(decision.ordered) == ["a", "b"]
        assert not decision.used_fallback
        oracle.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_oracle_keeps_order(self):
        decision = await PriorityResolver(None).resolve(
            [make_meeting("a"), make_meeting("b")], {}, WINDOW
        )
        assert ids(decision.ordered) == ["a", "b"]
        assert decision.error is None

    @pytest.mark.asyncio
    async def test_oracle_reorders_and_proposes(self):
        reply = {
            "priorityOrder": ["b"],
            "meetingsToReschedule": [
                {
                    "meetingId": "a",
                    "newStartTime": "2025-03-10T13:00:00Z",
                    "newEndTime": "2025-03-10T14:00:00Z",
                }
            ],
        }
        oracle = make_oracle(json.dumps(reply))
        decision = await PriorityResolver(oracle).resolve(
            [make_meeting("a"), make_meeting("b")], {"a@x.com": ["rule"]}, WINDOW
        )

        assert ids(decision.ordered) == ["b", "a"]
        assert decision.reply is not None
        assert decision.reply.proposals[0].meeting_id == "a"
        oracle.complete.assert_awaited_once()
        user_prompt, system_prompt = oracle.complete.call_args.args
        assert "rule" in user_prompt
        assert "15 minutes" in system_prompt

    @pytest.mark.asyncio
    async def test_oracle_exception_falls_back(self):
        oracle = make_oracle(RuntimeError("connection reset"))
        decision = await PriorityResolver(oracle).resolve(
            [make_meeting("a"), make_meeting("b")], {}, WINDOW
        )

        assert ids(decision.ordered) == ["a", "b"]
        assert decision.reply is None
        assert decision.used_fallback
        assert decision.error == "LLMProcessingError: connection reset"

    @pytest.mark.asyncio
    async def test_oracle_processing_error_not_double_prefixed(self):
        oracle = make_oracle(OracleProcessingError("rate limited"))
        decision = await PriorityResolver(oracle).resolve(
            [make_meeting("a"), make_meeting("b")], {}, WINDOW
        )
        assert decision.error == "LLMProcessingError: rate limited"

    @pytest.mark.asyncio
    async def test_unparseable_reply_falls_back(self):
        oracle = make_oracle("Sorry, I cannot do that.")
        decision = await PriorityResolver(oracle).resolve(
            [make_meeting("a"), make_meeting("b")], {}, WINDOW
        )

        assert ids(decision.ordered) == ["a", "b"]
        assert decision.error == "LLMProcessingError: invalid response structure"

    @pytest.mark.asyncio
    async def test_structurally_invalid_reply_falls_back(self):
        oracle = make_oracle('{"meetingsToReschedule": "none"}')
        decision = await PriorityResolver(oracle).resolve(
            [make_meeting("a"), make_meeting("b")], {}, WINDOW
        )
        assert decision.error is not None
        assert "meetingsToReschedule must be an array" in decision.error
