"""Data models for conflict detection and resolution.

All models are plain dataclasses with ``to_dict`` for serialisation.
Datetimes are always timezone-aware; naive values are read as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from meeting_resolver.utils import minutes_between

# ------------------------------------------------------------------
# Datetime helpers
# ------------------------------------------------------------------


def parse_datetime(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not isinstance(value, str) or not value:
            raise ValueError(f"Invalid datetime value: {value!r}")
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_datetime(value: datetime | None) -> str | None:
    """Serialise a datetime as ISO-8601, passing ``None`` through."""
    return value.isoformat() if value else None


# ------------------------------------------------------------------
# Windows and intervals
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TimeWindow:
    """A half-open ``[start, end)`` span of time."""

    start: datetime
    end: datetime

    @classmethod
    def next_hours(cls, hours: int, *, now: datetime | None = None) -> TimeWindow:
        """Window from ``now`` to ``now + hours``."""
        start = parse_datetime(now) if now else datetime.now(UTC)
        return cls(start=start, end=start + timedelta(hours=hours))

    @property
    def duration_minutes(self) -> float:
        return minutes_between(self.start, self.end)

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# Busy intervals returned by free/busy readers share the window shape.
BusyInterval = TimeWindow


# ------------------------------------------------------------------
# Calendar data
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    """A calendar event as read from a user's calendar."""

    event_id: str
    subject: str
    start: datetime
    end: datetime
    participants: tuple[str, ...] = ()
    owner: str = ""
    description: str = ""
    duration_minutes: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "participants", tuple(self.participants))

    @property
    def minutes(self) -> int:
        """Declared duration, or the start/end span when none was given."""
        if self.duration_minutes:
            return self.duration_minutes
        return int(minutes_between(self.start, self.end))

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, owner: str = "") -> Event:
        """Build an event from a calendar summary payload."""
        start = parse_datetime(data["start"])
        end = parse_datetime(data["end"])
        return cls(
            event_id=str(data.get("id", "")),
            subject=data.get("subject", ""),
            start=start,
            end=end,
            participants=tuple(data.get("participants", ())),
            owner=data.get("owner", owner) or owner,
            description=data.get("description", "") or "",
            duration_minutes=int(data.get("duration_minutes", 0) or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "subject": self.subject,
            "description": self.description,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.minutes,
            "participants": list(self.participants),
            "owner": self.owner,
        }


@dataclass(frozen=True)
class Attendee:
    """A meeting attendee."""

    email: str
    role: str = "required"

    def to_dict(self) -> dict[str, Any]:
        return {"email": self.email, "role": self.role}


@dataclass(frozen=True)
class ConflictingMeeting:
    """Normalised view of an event taking part in a conflict."""

    id: str
    title: str
    organizer: str
    attendees: tuple[Attendee, ...]
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    description: str = ""
    location: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "attendees", tuple(self.attendees))

    @property
    def attendee_emails(self) -> list[str]:
        """Attendee emails in order, without duplicates."""
        return list(dict.fromkeys(a.email for a in self.attendees if a.email))

    @property
    def span_minutes(self) -> float:
        return minutes_between(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "organizer": self.organizer,
            "attendees": [a.to_dict() for a in self.attendees],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConflictingMeeting:
        start = parse_datetime(data["start_time"])
        end = parse_datetime(data["end_time"])
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            organizer=data.get("organizer", "unknown"),
            attendees=tuple(
                Attendee(email=a["email"], role=a.get("role", "required"))
                for a in data.get("attendees", [])
            ),
            start_time=start,
            end_time=end,
            duration_minutes=int(data.get("duration_minutes") or minutes_between(start, end)),
            description=data.get("description", "") or "",
            location=data.get("location"),
        )


@dataclass(frozen=True)
class ConflictPair:
    """Two events whose times overlap, with the shared window."""

    first: Event
    second: Event
    overlap_start: datetime
    overlap_end: datetime

    @property
    def overlap_minutes(self) -> int:
        return int(minutes_between(self.overlap_start, self.overlap_end))

    def to_dict(self) -> dict[str, Any]:
        return {
            "first": self.first.to_dict(),
            "second": self.second.to_dict(),
            "overlap_start": self.overlap_start.isoformat(),
            "overlap_end": self.overlap_end.isoformat(),
            "overlap_minutes": self.overlap_minutes,
        }


# ------------------------------------------------------------------
# Candidates and assignment
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ProposedTimeSlot:
    """A candidate replacement slot. Higher score is better."""

    start: datetime
    end: datetime
    score: float | None = None

    @property
    def effective_score(self) -> float:
        """Score used for ordering; an undefined score counts as 0."""
        return self.score if self.score is not None else 0.0

    @property
    def duration_minutes(self) -> float:
        return minutes_between(self.start, self.end)

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "score": self.score}


@dataclass(frozen=True)
class BookedSlot:
    """An interval committed during greedy assignment."""

    start: datetime
    end: datetime
    meeting_id: str


@dataclass(frozen=True)
class RescheduleProposal:
    """One entry of the oracle's ``meetingsToReschedule`` list."""

    meeting_id: str
    new_start_time: datetime
    new_end_time: datetime

    def to_slot(self) -> ProposedTimeSlot:
        return ProposedTimeSlot(start=self.new_start_time, end=self.new_end_time)


@dataclass
class MeetingCandidates:
    """A meeting with its validated candidate slots, in priority order."""

    meeting: ConflictingMeeting
    candidates: list[ProposedTimeSlot] = field(default_factory=list)


class ResolutionStatus(StrEnum):
    """Outcome of resolving a single meeting."""

    SCHEDULED = "scheduled"
    NO_ACTION_TAKEN = "no_action_taken"  # valid proposal, not applied
    UNRESOLVED = "unresolved"
    INVALID_PROPOSAL = "invalid_proposal"


@dataclass
class ResolvedMeeting:
    """Result of greedy assignment for one meeting."""

    meeting: ConflictingMeeting
    status: ResolutionStatus = ResolutionStatus.UNRESOLVED
    rescheduled_to: ProposedTimeSlot | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.meeting.to_dict()
        data["status"] = self.status.value
        if self.rescheduled_to is not None:
            data["rescheduled_to"] = self.rescheduled_to.to_dict()
        return data


@dataclass
class ResolutionReport:
    """Per-meeting outcome of a run."""

    meeting_id: str
    original_start_time: datetime | None
    original_end_time: datetime | None
    status: ResolutionStatus
    proposed_new_start_time: datetime | None = None
    proposed_new_end_time: datetime | None = None
    reason: str | None = None
    llm_proposal: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "original_start_time": format_datetime(self.original_start_time) or "",
            "original_end_time": format_datetime(self.original_end_time) or "",
            "proposed_new_start_time": format_datetime(self.proposed_new_start_time),
            "proposed_new_end_time": format_datetime(self.proposed_new_end_time),
            "status": self.status.value,
            "reason": self.reason,
            "llm_proposal": self.llm_proposal,
        }


@dataclass(frozen=True)
class RunSummary:
    """Aggregate counts for a run. Always derived from the reports."""

    total_conflicts: int = 0
    proposals_generated: int = 0
    valid_proposals: int = 0
    invalid_proposals: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_conflicts": self.total_conflicts,
            "proposals_generated": self.proposals_generated,
            "valid_proposals": self.valid_proposals,
            "invalid_proposals": self.invalid_proposals,
        }


@dataclass
class ProposalOutcome:
    """Everything a propose-mode run returns."""

    identified_conflicts: list[ConflictingMeeting]
    resolution_reports: list[ResolutionReport]
    summary: RunSummary
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "identified_conflicts": [m.to_dict() for m in self.identified_conflicts],
            "resolution_reports": [r.to_dict() for r in self.resolution_reports],
            "summary": self.summary.to_dict(),
        }
        if self.errors:
            data["errors"] = list(self.errors)
        return data
