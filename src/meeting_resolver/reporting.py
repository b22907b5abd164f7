"""Run-level aggregation of resolution outcomes."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from meeting_resolver.models import (
    ConflictingMeeting,
    ProposalOutcome,
    ResolutionReport,
    ResolutionStatus,
    RunSummary,
)

_VALID = frozenset({ResolutionStatus.NO_ACTION_TAKEN, ResolutionStatus.SCHEDULED})


def build_summary(
    identified: Sequence[ConflictingMeeting], reports: Sequence[ResolutionReport]
) -> RunSummary:
    """Count meetings and reports by status."""
    return RunSummary(
        total_conflicts=len(identified),
        proposals_generated=len(reports),
        valid_proposals=sum(1 for r in reports if r.status in _VALID),
        invalid_proposals=sum(1 for r in reports if r.status == ResolutionStatus.INVALID_PROPOSAL),
    )


class ResolutionReporter:
    """Wraps per-meeting reports and the run summary into one outcome."""

    def report(
        self,
        conflict_sets: Iterable[Sequence[ConflictingMeeting]],
        reports: Sequence[ResolutionReport],
        errors: Sequence[str] = (),
    ) -> ProposalOutcome:
        identified = [meeting for conflict_set in conflict_sets for meeting in conflict_set]
        return ProposalOutcome(
            identified_conflicts=identified,
            resolution_reports=list(reports),
            summary=build_summary(identified, reports),
            errors=list(errors),
        )
