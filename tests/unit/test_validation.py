"""Unit tests for candidate constraint validation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from meeting_resolver.constants import (
    REASON_ATTENDEE_BUSY,
    REASON_DURATION_CHANGE,
    REASON_UNKNOWN_MEETING,
)
from meeting_resolver.errors import CalendarAPIError, ExternalAPIError, ProposalValidationError
from meeting_resolver.models import (
    Attendee,
    BusyInterval,
    ConflictingMeeting,
    ProposedTimeSlot,
    RescheduleProposal,
    ResolutionStatus,
    TimeWindow,
)
from meeting_resolver.oracle import OracleReply
from meeting_resolver.validation import ConstraintValidator, PendingCandidate

BASE = datetime(2025, 3, 10, tzinfo=UTC)


def at(hour: int, minute: int = 0) -> datetime:
    return BASE.replace(hour=hour, minute=minute)


def make_meeting(meeting_id: str, attendees: list[str] | None = None) -> ConflictingMeeting:
    emails = attendees or ["a@x.com", "b@x.com"]
    return ConflictingMeeting(
        id=meeting_id,
        title=meeting_id,
        organizer=emails[0],
        attendees=[Attendee(e) for e in emails],
        start_time=at(9),
        end_time=at(10),
        duration_minutes=60,
    )


def slot(start: datetime, minutes: int = 60) -> ProposedTimeSlot:
    return ProposedTimeSlot(start=start, end=start + timedelta(minutes=minutes))


def make_free_busy(busy: dict | None = None, error: Exception | None = None) -> MagicMock:
    reader = MagicMock()
    if error is not None:
        reader.query_free_busy = AsyncMock(side_effect=error)
    else:
        reader.query_free_busy = AsyncMock(return_value=busy or {})
    return reader


class TestCheckDuration:
    """Tests for ConstraintValidator.check_duration."""

    @pytest.mark.parametrize("minutes", [45, 60, 75])
    def test_within_tolerance(self, minutes):
        validator = ConstraintValidator(make_free_busy())
        validator.check_duration(make_meeting("m1"), slot(at(13), minutes))

    @pytest.mark.parametrize("minutes", [44, 76, 30])
    def test_outside_tolerance(self, minutes):
        validator = ConstraintValidator(make_free_busy())
        with pytest.raises(ProposalValidationError, match=REASON_DURATION_CHANGE):
            validator.check_duration(make_meeting("m1"), slot(at(13), minutes))

    def test_custom_tolerance(self):
        validator = ConstraintValidator(make_free_busy(), tolerance_minutes=0)
        with pytest.raises(ProposalValidationError):
            validator.check_duration(make_meeting("m1"), slot(at(13), 61))


class TestCheckMembership:
    """Tests for ConstraintValidator.check_membership."""

    def test_no_reply(self):
        validator = ConstraintValidator(make_free_busy())
        assert validator.check_membership([make_meeting("m1")], None) == []

    def test_unknown_meeting_reported(self):
        raw = {"meetingsToReschedule": [{"meetingId": "ghost"}]}
        reply = OracleReply(
            proposals=[
                RescheduleProposal("m1", at(13), at(14)),
                RescheduleProposal("ghost", at(13), at(14)),
            ],
            raw=raw,
        )
        reports = ConstraintValidator(make_free_busy()).check_membership(
            [make_meeting("m1"), make_meeting("m2")], reply
        )

        assert len(reports) == 1
        report = reports[0]
        assert report.meeting_id == "ghost"
        assert report.status == ResolutionStatus.INVALID_PROPOSAL
        assert report.reason == REASON_UNKNOWN_MEETING
        assert report.original_start_time is None
        assert report.llm_proposal is raw


class TestValidate:
    """Tests for ConstraintValidator.validate."""

    @pytest.mark.asyncio
    async def test_nothing_pending_skips_query(self):
        reader = make_free_busy()
        result = await ConstraintValidator(reader).validate([])

        assert result.accepted == []
        assert result.rejected == []
        reader.query_free_busy.assert_not_called()

    @pytest.mark.asyncio
    async def test_only_duration_failures_skip_query(self):
        reader = make_free_busy()
        pending = [PendingCandidate(make_meeting("m1"), slot(at(13), 120))]

        result = await ConstraintValidator(reader).validate(pending)

        assert [r.reason for r in result.rejected] == [REASON_DURATION_CHANGE]
        reader.query_free_busy.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_batched_query(self):
        reader = make_free_busy()
        pending = [
            PendingCandidate(make_meeting("m1", ["a@x.com", "b@x.com"]), slot(at(13))),
            PendingCandidate(make_meeting("m2", ["b@x.com", "c@x.com"]), slot(at(15))),
            PendingCandidate(make_meeting("m2", ["b@x.com", "c@x.com"]), slot(at(11))),
        ]

        result = await ConstraintValidator(reader).validate(pending)

        assert len(result.accepted) == 3
        reader.query_free_busy.assert_awaited_once()
        emails, window = reader.query_free_busy.call_args.args
        assert emails == ["a@x.com", "b@x.com", "c@x.com"]
        assert window == TimeWindow(start=at(11), end=at(16))

    @pytest.mark.asyncio
    async def test_busy_attendee_rejects_candidate(self):
        busy = {"b@x.com": [BusyInterval(start=at(13, 30), end=at(14))]}
        raw = {"meetingsToReschedule": []}
        pending = [
            PendingCandidate(make_meeting("m1"), slot(at(13)), llm_proposal=raw),
            PendingCandidate(make_meeting("m1"), slot(at(14))),
        ]

        result = await ConstraintValidator(make_free_busy(busy)).validate(pending)

        assert [c.slot.start for c in result.accepted] == [at(14)]
        assert len(result.rejected) == 1
        assert result.rejected[0].reason == REASON_ATTENDEE_BUSY
        assert result.rejected[0].llm_proposal is raw
        assert result.rejected[0].original_start_time == at(9)

    @pytest.mark.asyncio
    async def test_touching_busy_interval_allowed(self):
        busy = {"a@x.com": [BusyInterval(start=at(12), end=at(13))]}
        pending = [PendingCandidate(make_meeting("m1"), slot(at(13)))]

        result = await ConstraintValidator(make_free_busy(busy)).validate(pending)

        assert len(result.accepted) == 1

    @pytest.mark.asyncio
    async def test_calendar_error_propagates(self):
        reader = make_free_busy(error=CalendarAPIError("CalendarAPIError: 503: unavailable"))
        pending = [PendingCandidate(make_meeting("m1"), slot(at(13)))]

        with pytest.raises(CalendarAPIError):
            await ConstraintValidator(reader).validate(pending)

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self):
        reader = make_free_busy(error=RuntimeError("socket closed"))
        pending = [PendingCandidate(make_meeting("m1"), slot(at(13)))]

        with pytest.raises(ExternalAPIError, match="CalendarAPIError: freebusy query failed"):
            await ConstraintValidator(reader).validate(pending)
