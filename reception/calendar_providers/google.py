"""Google Calendar provider implementation.

Uses a Google Cloud service account to interact with the Calendar API v3.
The service account key is read from ``GOOGLE_SERVICE_ACCOUNT_JSON``, which
may hold either a path to the key file or the key JSON itself (hosting
platforms often only offer a multi-line env var).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from functools import partial
from typing import Any

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from reception.exceptions import CalendarError

from .base import BusyInterval, CalendarEvent, CalendarProvider

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]


def _load_credentials(service_account: str) -> Credentials:
    """Build credentials from a key file path or inline key JSON."""
    if service_account.lstrip().startswith("{"):
        try:
            info = json.loads(service_account)
        except json.JSONDecodeError as e:
            raise ValueError(
                "GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON. "
                "Paste the full JSON content exactly."
            ) from e
        return Credentials.from_service_account_info(info, scopes=SCOPES)
    return Credentials.from_service_account_file(service_account, scopes=SCOPES)


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(self, service_account: str | None = None) -> None:
        sa = service_account or os.environ.get("GOOGLE_SERVICE_ACCOUNT_JSON", "")
        if not sa:
            raise ValueError(
                "Google service account JSON must be provided via "
                "constructor argument or GOOGLE_SERVICE_ACCOUNT_JSON env var."
            )
        self._credentials = _load_credentials(sa)
        self._service = build(
            "calendar", "v3", credentials=self._credentials
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    @staticmethod
    def _parse_when(value: dict) -> datetime:
        """Parse an event start/end, which is either dateTime or all-day date."""
        raw = value.get("dateTime") or value.get("date", "")
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def list_busy(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Query the freebusy API for the busy intervals in the window."""
        body = {
            "timeMin": self._to_rfc3339(time_min),
            "timeMax": self._to_rfc3339(time_max),
            "items": [{"id": calendar_id}],
        }

        try:
            response = await self._run_in_executor(
                self._service.freebusy().query(body=body).execute
            )
        except Exception as e:
            raise CalendarError(f"freebusy query failed for {calendar_id}: {e}") from e

        busy_intervals: list[dict] = (
            response.get("calendars", {})
            .get(calendar_id, {})
            .get("busy", [])
        )

        busy = [
            BusyInterval(
                start=self._parse_when({"dateTime": interval["start"]}),
                end=self._parse_when({"dateTime": interval["end"]}),
            )
            for interval in busy_intervals
        ]
        busy.sort(key=lambda b: b.start)
        return busy

    async def search_events(
        self,
        calendar_id: str,
        query_text: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[CalendarEvent]:
        """Free-text search over event summary, description and location."""
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "timeMin": self._to_rfc3339(time_min),
            "timeMax": self._to_rfc3339(time_max),
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if query_text:
            params["q"] = query_text

        try:
            response = await self._run_in_executor(
                self._service.events().list(**params).execute
            )
        except Exception as e:
            raise CalendarError(f"event search failed for {calendar_id}: {e}") from e

        events = []
        for item in response.get("items", []):
            if item.get("status") == "cancelled":
                continue
            events.append(
                CalendarEvent(
                    id=item.get("id", ""),
                    summary=item.get("summary", ""),
                    description=item.get("description", ""),
                    location=item.get("location", ""),
                    start=self._parse_when(item.get("start", {})),
                    end=self._parse_when(item.get("end", {})),
                )
            )
        return events

    async def create_event(
        self, calendar_id: str, event: CalendarEvent
    ) -> dict:
        """Insert an event into the Google Calendar."""
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {"dateTime": self._to_rfc3339(event.start)},
            "end": {"dateTime": self._to_rfc3339(event.end)},
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.attendees:
            body["attendees"] = [
                {"email": addr} for addr in event.attendees
            ]

        result = await self._run_in_executor(
            self._service.events()
            .insert(
                calendarId=calendar_id,
                body=body,
                sendUpdates="all" if event.attendees else "none",
            )
            .execute
        )

        logger.info("Created event %s on calendar %s", result["id"], calendar_id)

        return {
            "event_id": result["id"],
            "html_link": result.get("htmlLink", ""),
            "status": result.get("status", "confirmed"),
        }

    async def cancel_event(
        self, calendar_id: str, event_id: str
    ) -> bool:
        """Delete an event from Google Calendar."""
        try:
            await self._run_in_executor(
                self._service.events()
                .delete(calendarId=calendar_id, eventId=event_id)
                .execute
            )
            logger.info(
                "Cancelled event %s on calendar %s", event_id, calendar_id
            )
            return True
        except Exception:
            logger.exception(
                "Failed to cancel event %s on calendar %s",
                event_id,
                calendar_id,
            )
            return False
