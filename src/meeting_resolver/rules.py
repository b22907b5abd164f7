"""Per-user conflict resolution rules.

Rules are opaque strings handed to the ranking oracle. A failed lookup for
one user never fails a run; that user simply has no rules.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from meeting_resolver.errors import RulesLookupError
from meeting_resolver.logging import get_logger

log = get_logger("meeting_resolver.rules")

# Rules should read as if the oracle only had the meeting info in context.
DEFAULT_RULES: tuple[str, ...] = (
    "Prioritize external meetings over internal meetings",
    "Prioritize meetings with participants over personal meetings "
    "(personal meetings usually have 1 participant)",
    "Prefer meetings within working hours (e.g., 9am-5pm local time)",
    "Prioritize meetings with higher-level stakeholders",
    "Prefer meetings involving fewer conflicts among invitees",
    "Prioritize meetings with mandatory attendees over optional ones",
    "Prioritize meetings with more participants over less participants",
)


class RulesStore(Protocol):
    """Source of scheduling-preference rules."""

    async def rules_for(self, email: str) -> list[str]:
        """Return the rules for a user."""
        ...


class StaticRulesStore:
    """Rules store that returns the same rules for every user."""

    def __init__(self, rules: Iterable[str] = DEFAULT_RULES) -> None:
        self._rules = list(rules)

    async def rules_for(self, email: str) -> list[str]:
        return list(self._rules)


class HttpRulesStore:
    """Rules store backed by an HTTP service.

    ``GET {base_url}/api/v1/users/{email}/conflict-rules`` returning either a
    JSON list or ``{"rules": [...]}``.
    """

    def __init__(self, base_url: str, token: str = "", *, timeout: float = 10.0) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def rules_for(self, email: str) -> list[str]:
        url = f"{self._base_url}/api/v1/users/{quote(email)}/conflict-rules"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.get(url, headers=self._headers())
                response.raise_for_status()
                body: Any = response.json()
            except httpx.HTTPStatusError as exc:
                raise RulesLookupError(
                    f"Rules read failed: {exc.response.status_code} {exc.response.text}"
                ) from exc
            except httpx.RequestError as exc:
                raise RulesLookupError(f"Rules request failed: {exc}") from exc

        if isinstance(body, dict):
            body = body.get("rules", [])
        if not isinstance(body, list):
            raise RulesLookupError("Rules response must be a list")
        return [str(rule) for rule in body]


async def collect_rules(store: RulesStore | None, emails: Iterable[str]) -> dict[str, list[str]]:
    """Fetch rules for every email concurrently.

    Any per-user failure is logged and treated as an empty rule list.
    """
    unique = list(dict.fromkeys(e for e in emails if e))
    if store is None or not unique:
        return {email: [] for email in unique}

    results = await asyncio.gather(
        *(store.rules_for(email) for email in unique), return_exceptions=True
    )

    rules: dict[str, list[str]] = {}
    for email, result in zip(unique, results, strict=True):
        if isinstance(result, Exception):
            log.warning("rules_lookup_failed", email=email, error=str(result))
            rules[email] = []
        elif isinstance(result, BaseException):
            raise result
        else:
            rules[email] = list(result)
    return rules
