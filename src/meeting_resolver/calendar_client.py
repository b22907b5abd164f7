"""Calendar collaborators: event listing, free/busy and booking.

The engine depends only on the protocols below. ``GoogleCalendarClient``
implements all three against the Google Calendar v3 REST API.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from meeting_resolver.errors import CalendarAPIError
from meeting_resolver.logging import get_logger
from meeting_resolver.models import BusyInterval, Event, TimeWindow, parse_datetime
from meeting_resolver.utils import minutes_between

log = get_logger("meeting_resolver.calendar_client")

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


class CalendarReader(Protocol):
    """Reads events from the calendars of several users."""

    async def list_events(self, users: Sequence[str], window: TimeWindow) -> list[Event]:
        """Events from every user's calendar, each tagged with its owner."""
        ...


class FreeBusyReader(Protocol):
    """Reads busy intervals for several users."""

    async def query_free_busy(
        self, emails: Sequence[str], window: TimeWindow
    ) -> dict[str, list[BusyInterval]]:
        """Busy intervals per email inside ``window``."""
        ...


class BookingService(Protocol):
    """Creates calendar events once a slot is final."""

    async def schedule_meeting(
        self,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: Sequence[str],
    ) -> None:
        """Book a meeting."""
        ...


class GoogleCalendarClient:
    """Async Google Calendar API client.

    Supports listing events across user calendars, batched free/busy
    queries and creating events.
    """

    def __init__(
        self,
        access_token: str,
        *,
        timeout: float = 30.0,
        time_zone: str = "UTC",
        max_results: int = 250,
    ) -> None:
        """Initialize the calendar client.

        Args:
            access_token: Google OAuth2 access token.
            timeout: HTTP request timeout.
            time_zone: Time zone sent with created events.
            max_results: Page size for event listing.
        """
        if not access_token:
            raise ValueError("access_token is required")
        self._access_token = access_token
        self._timeout = timeout
        self._time_zone = time_zone
        self._max_results = max_results

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def list_events(self, users: Sequence[str], window: TimeWindow) -> list[Event]:
        """List single (expanded) events for each user's primary calendar."""
        events: list[Event] = []
        for user in users:
            url = f"{CALENDAR_API_BASE}/calendars/{quote(user)}/events"
            params: dict[str, Any] = {
                "timeMin": _to_rfc3339(window.start),
                "timeMax": _to_rfc3339(window.end),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": self._max_results,
            }
            page_token: str | None = None
            while True:
                if page_token:
                    params["pageToken"] = page_token
                data = await self._get(url, params)
                for item in data.get("items", []):
                    event = self._parse_event(item, owner=user)
                    if event is not None:
                        events.append(event)
                page_token = data.get("nextPageToken")
                if not page_token:
                    break
            log.debug("events_listed", calendar=user, total=len(events))
        return events

    async def query_free_busy(
        self, emails: Sequence[str], window: TimeWindow
    ) -> dict[str, list[BusyInterval]]:
        """Run one freeBusy query for all ``emails``."""
        body = {
            "timeMin": _to_rfc3339(window.start),
            "timeMax": _to_rfc3339(window.end),
            "items": [{"id": email} for email in emails],
        }
        data = await self._post(f"{CALENDAR_API_BASE}/freeBusy", body)

        busy: dict[str, list[BusyInterval]] = {}
        for email, calendar in (data.get("calendars") or {}).items():
            intervals: list[BusyInterval] = []
            for block in calendar.get("busy") or []:
                try:
                    intervals.append(
                        BusyInterval(
                            start=parse_datetime(block["start"]),
                            end=parse_datetime(block["end"]),
                        )
                    )
                except (KeyError, ValueError):
                    log.warning("busy_block_skipped", email=email, block=block)
            busy[email] = intervals
        log.debug("free_busy_queried", calendars=len(busy))
        return busy

    async def schedule_meeting(
        self,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: Sequence[str],
    ) -> None:
        """Create an event on the primary calendar and notify attendees."""
        body: dict[str, Any] = {
            "summary": summary,
            "start": {"dateTime": start.isoformat(), "timeZone": self._time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self._time_zone},
            "attendees": [{"email": e} for e in attendees],
        }
        if description:
            body["description"] = description

        url = f"{CALENDAR_API_BASE}/calendars/primary/events"
        data = await self._post(url, body, params={"sendUpdates": "all"})
        log.info("meeting_scheduled", event_id=data.get("id", ""), summary=summary)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.get(url, headers=self._headers(), params=params)
                response.raise_for_status()
                result: dict[str, Any] = response.json()
                return result
            except httpx.HTTPStatusError as exc:
                raise CalendarAPIError(
                    f"CalendarAPIError: {exc.response.status_code}: {exc.response.text}"
                ) from exc
            except httpx.RequestError as exc:
                raise CalendarAPIError(f"CalendarAPIError: request failed: {exc}") from exc

    async def _post(
        self,
        url: str,
        json_data: dict[str, Any],
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.post(
                    url, headers=self._headers(), json=json_data, params=params
                )
                response.raise_for_status()
                result: dict[str, Any] = response.json()
                return result
            except httpx.HTTPStatusError as exc:
                raise CalendarAPIError(
                    f"CalendarAPIError: {exc.response.status_code}: {exc.response.text}"
                ) from exc
            except httpx.RequestError as exc:
                raise CalendarAPIError(f"CalendarAPIError: request failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------

    def _parse_event(self, data: dict[str, Any], *, owner: str) -> Event | None:
        """Parse a Google Calendar API event. All-day and cancelled events are skipped."""
        if data.get("status") == "cancelled":
            return None
        start_raw = data.get("start", {}).get("dateTime")
        end_raw = data.get("end", {}).get("dateTime")
        if not start_raw or not end_raw:
            return None
        try:
            start = parse_datetime(start_raw)
            end = parse_datetime(end_raw)
        except ValueError:
            return None

        participants = [a["email"] for a in data.get("attendees", []) if a.get("email")]
        if not participants:
            organizer = data.get("organizer", {}).get("email")
            participants = [organizer or owner]

        return Event(
            event_id=data.get("id", ""),
            subject=data.get("summary", ""),
            description=data.get("description", "") or "",
            start=start,
            end=end,
            participants=tuple(participants),
            owner=owner,
            duration_minutes=int(minutes_between(start, end)),
        )


def _to_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
