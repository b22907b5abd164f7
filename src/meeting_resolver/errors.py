"""Exception types raised by the meeting resolver.

Only ``ExternalAPIError`` escapes a run. The others are recovered at the
granularity noted on each class.
"""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for meeting resolver errors."""


class ProposalValidationError(ResolverError):
    """A candidate or oracle proposal is malformed or semantically invalid.

    Recovered locally as an ``invalid_proposal`` report.
    """


class OracleProcessingError(ResolverError):
    """The ranking oracle failed or returned unusable content.

    Recovered per conflict set: the set falls back to its input order.
    """

    def __init__(self, message: str) -> None:
        if not message.startswith("LLMProcessingError"):
            message = f"LLMProcessingError: {message}"
        super().__init__(message)


class RulesLookupError(ResolverError):
    """Fetching a user's scheduling rules failed. Absorbed as an empty rule list."""


class ExternalAPIError(ResolverError):
    """A free/busy or calendar request failed. Fatal for the run."""


class CalendarAPIError(ExternalAPIError):
    """Raised when a Google Calendar HTTP call fails."""
