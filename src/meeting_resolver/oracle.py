"""Ranking oracle contract and reply parsing.

The oracle is an external text-completion service. It receives a prompt
describing a conflict set and is expected to answer with JSON, possibly
wrapped in prose. All knowledge of how that reply is decoded lives in
``parse_oracle_reply`` and ``parse_reschedule_proposal``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from google import genai

from meeting_resolver.errors import OracleProcessingError
from meeting_resolver.logging import get_logger
from meeting_resolver.models import RescheduleProposal, parse_datetime

log = get_logger("meeting_resolver.oracle")


class RankingOracle(Protocol):
    """Protocol for text-completion services used for prioritisation."""

    async def complete(self, user_prompt: str, system_prompt: str) -> str:
        """Return the raw completion text for the given prompts."""
        ...


@dataclass
class OracleReply:
    """Structurally valid oracle reply."""

    proposals: list[RescheduleProposal] = field(default_factory=list)
    priority_order: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


def parse_oracle_reply(raw: str) -> dict[str, Any]:
    """Decode the JSON object in an oracle reply.

    Tries the whole string first, then the substring between the first
    ``{`` and the last ``}``.

    Raises:
        OracleProcessingError: If no JSON object can be decoded.
    """
    if not isinstance(raw, str):
        raise OracleProcessingError("invalid response structure")

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        payload = None
        start = raw.find("{")
        end = raw.rfind("}")
        if start != -1 and end > start:
            try:
                payload = json.loads(raw[start : end + 1])
            except json.JSONDecodeError:
                log.warning("oracle_reply_unparseable", reply=raw[:200])

    if not isinstance(payload, dict):
        raise OracleProcessingError("invalid response structure")
    return payload


def parse_reschedule_proposal(payload: dict[str, Any]) -> OracleReply:
    """Validate the structure of a decoded oracle reply.

    Raises:
        OracleProcessingError: If ``meetingsToReschedule`` is not a list of
            well-formed entries, or ``priorityOrder`` is present but not a
            list of strings.
    """
    items = payload.get("meetingsToReschedule")
    if not isinstance(items, list):
        raise OracleProcessingError("meetingsToReschedule must be an array")

    proposals: list[RescheduleProposal] = []
    for item in items:
        if not isinstance(item, dict):
            raise OracleProcessingError("meetingsToReschedule entries must be objects")
        try:
            proposals.append(
                RescheduleProposal(
                    meeting_id=str(item["meetingId"]),
                    new_start_time=parse_datetime(item["newStartTime"]),
                    new_end_time=parse_datetime(item["newEndTime"]),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise OracleProcessingError(f"malformed reschedule entry: {exc}") from exc

    order = payload.get("priorityOrder", [])
    if not isinstance(order, list) or not all(isinstance(i, str) for i in order):
        raise OracleProcessingError("priorityOrder must be an array of meeting ids")

    return OracleReply(proposals=proposals, priority_order=order, raw=payload)


class GeminiOracle:
    """Ranking oracle backed by Gemini through the google-genai SDK."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.0-flash",
        temperature: float = 0.1,
        max_output_tokens: int = 2048,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._client = genai.Client(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        log.info("gemini_oracle_initialized", model=model)

    async def complete(self, user_prompt: str, system_prompt: str) -> str:
        """Send the prompts to Gemini and return the reply text.

        Raises:
            OracleProcessingError: If the SDK call fails.
        """
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=user_prompt,
                config={
                    "system_instruction": system_prompt,
                    "temperature": self._temperature,
                    "max_output_tokens": self._max_output_tokens,
                },
            )
        except Exception as exc:
            raise OracleProcessingError(str(exc)) from exc
        return response.text or ""
