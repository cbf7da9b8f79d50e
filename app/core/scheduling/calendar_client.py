"""
Google Calendar REST client.

Events are written with the business timezone name and tagged with the
booking category in private extended properties so they can be filtered
later. Every call is bounded by the configured timeout; failures surface as
CalendarWriteError (writes) or CalendarUnavailableError (reads).
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Type
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from app.config import get_settings
from app.core.errors import (
    CalendarNotConfiguredError,
    CalendarUnavailableError,
    CalendarWriteError,
    SchedulingError,
)
from app.core.scheduling.categories import AgendaType, normalize_agenda_type
from app.core.scheduling.timeutil import ensure_utc, parse_instant, to_local

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
PRIMARY_CALENDAR = "primary"
GONE_STATUSES = (404, 410)


@dataclass
class CalendarEvent:
    """Event as seen by the scheduling core."""

    external_id: str
    calendar_id: str
    link: Optional[str] = None
    summary: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    agenda_type: Optional[AgendaType] = None

    @classmethod
    def from_api(cls, data: dict, calendar_id: str) -> "CalendarEvent":
        """Create from a Calendar API event resource."""
        private = (data.get("extendedProperties") or {}).get("private") or {}
        return cls(
            external_id=data.get("id", ""),
            calendar_id=calendar_id,
            link=data.get("htmlLink"),
            summary=data.get("summary", ""),
            start=_event_time(data.get("start")),
            end=_event_time(data.get("end")),
            agenda_type=normalize_agenda_type(private.get("agendaType")),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "external_id": self.external_id,
            "calendar_id": self.calendar_id,
            "link": self.link,
            "summary": self.summary,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "agenda_type": self.agenda_type.value if self.agenda_type else None,
        }


def _event_time(value: Optional[dict]) -> Optional[datetime]:
    """Read an event start/end ({dateTime} or all-day {date})."""
    if not value:
        return None
    raw = value.get("dateTime") or value.get("date")
    if not raw:
        return None
    try:
        return parse_instant(raw)
    except SchedulingError:
        logger.warning(f"Unparseable calendar event time: {raw!r}")
        return None


def _rfc3339(instant: datetime) -> str:
    """UTC timestamp in the form the Calendar API expects for query bounds."""
    return ensure_utc(instant).strftime("%Y-%m-%dT%H:%M:%SZ")


class CalendarGateway:
    """
    Async client for the Google Calendar v3 REST API.

    Authenticates with a service account (key file path or inline JSON).
    When no key is configured every operation raises
    CalendarNotConfiguredError so callers can decide whether a missing
    calendar blocks the booking.
    """

    def __init__(
        self,
        service_account_key: Optional[str] = None,
        calendar_id: Optional[str] = None,
        category_calendar_ids: Optional[dict[AgendaType, Optional[str]]] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        credentials: Any = None,
    ):
        """Initialize client.

        Args:
            service_account_key: Path to, or JSON content of, the key
            calendar_id: Calendar used for every category when set
            category_calendar_ids: Per-category calendar ids
            base_url: Calendar API base URL (defaults to settings)
            timeout: Per-operation timeout in seconds (defaults to settings)
            credentials: Pre-built google-auth credentials
        """
        settings = get_settings()
        self.service_account_key = (
            service_account_key
            if service_account_key is not None
            else settings.google_service_account_key
        )
        self.calendar_id = calendar_id if calendar_id is not None else settings.google_calendar_id
        if category_calendar_ids is None:
            category_calendar_ids = {
                AgendaType.ONLINE: settings.google_calendar_id_online,
                AgendaType.IN_STORE: settings.google_calendar_id_in_store,
            }
        self.category_calendar_ids = category_calendar_ids
        self.base_url = base_url or settings.calendar_api_url
        self.timeout = timeout or settings.calendar_timeout_seconds
        self.timezone_name = settings.business_timezone_name

        self._credentials = credentials
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        """Whether credentials are available."""
        return self._credentials is not None or bool(self.service_account_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # === Credentials ===

    def _load_credentials(self):
        key = self.service_account_key or ""
        if os.path.exists(key):
            return service_account.Credentials.from_service_account_file(
                key, scopes=SCOPES
            )
        return service_account.Credentials.from_service_account_info(
            json.loads(key), scopes=SCOPES
        )

    async def _auth_headers(self) -> dict:
        """Bearer header, refreshing the service-account token when needed."""
        if not self.configured:
            raise CalendarNotConfiguredError(
                "Google Calendar is not configured (GOOGLE_SERVICE_ACCOUNT_KEY)"
            )

        try:
            if self._credentials is None:
                self._credentials = self._load_credentials()
            if not self._credentials.valid:
                # google-auth refresh is blocking
                await asyncio.to_thread(self._credentials.refresh, Request())
        except (GoogleAuthError, ValueError, OSError) as e:
            logger.error(f"Calendar authentication failed: {e}")
            raise CalendarUnavailableError(f"Calendar authentication failed: {e}") from e

        return {"Authorization": f"Bearer {self._credentials.token}"}

    # === Calendar selection ===

    def resolve_calendar_id(
        self,
        calendar_id: Optional[str] = None,
        category: Optional[AgendaType] = None,
    ) -> str:
        """Pick the calendar for an operation.

        Priority: explicit id, the shared GOOGLE_CALENDAR_ID, the category's
        own calendar, then "primary".
        """
        if calendar_id:
            return calendar_id
        if self.calendar_id:
            return self.calendar_id
        if category is not None and self.category_calendar_ids.get(category):
            return self.category_calendar_ids[category]
        return PRIMARY_CALENDAR

    def _candidate_calendar_ids(self, first: str) -> list[str]:
        """The resolved calendar followed by every other configured one."""
        candidates = [first]
        others = [self.calendar_id, *self.category_calendar_ids.values(), PRIMARY_CALENDAR]
        for calendar_id in others:
            if calendar_id and calendar_id not in candidates:
                candidates.append(calendar_id)
        return candidates

    # === HTTP ===

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[SchedulingError],
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one authenticated request bounded by the timeout."""

        async def send() -> httpx.Response:
            headers = await self._auth_headers()
            client = await self._get_client()
            return await client.request(method, path, headers=headers, **kwargs)

        try:
            return await asyncio.wait_for(send(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Calendar {method} {path} timed out after {self.timeout}s")
            raise error_cls(f"Calendar request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Calendar {method} {path} failed: {e}")
            raise error_cls(f"Calendar request failed: {e}") from e

    @staticmethod
    def _events_path(calendar_id: str, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            path += f"/{quote(event_id, safe='')}"
        return path

    def _event_time_payload(self, instant: datetime) -> dict:
        return {
            "dateTime": to_local(instant).isoformat(),
            "timeZone": self.timezone_name,
        }

    # === Events ===

    async def create_event(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        category: AgendaType,
        client_name: Optional[str] = None,
        calendar_id: Optional[str] = None,
    ) -> CalendarEvent:
        """Create an event.

        Raises:
            CalendarNotConfiguredError: no credentials
            CalendarWriteError: rejected, failed or timed out
        """
        target = self.resolve_calendar_id(calendar_id, category)
        payload = {
            "summary": summary,
            "description": description or "",
            "start": self._event_time_payload(start),
            "end": self._event_time_payload(end),
            "extendedProperties": {
                "private": {
                    "agendaType": category.value,
                    "clientName": client_name or "",
                },
            },
        }

        response = await self._request(
            "POST", self._events_path(target), CalendarWriteError, json=payload
        )
        if response.status_code not in (200, 201):
            logger.error(
                f"Calendar rejected event creation on {target}: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise CalendarWriteError(
                f"Calendar rejected event creation ({response.status_code})"
            )

        event = CalendarEvent.from_api(response.json(), target)
        logger.info(f"Calendar event {event.external_id} created on {target}")
        return event

    async def update_event(
        self,
        external_id: str,
        fields: dict,
        calendar_id: Optional[str] = None,
        category: Optional[AgendaType] = None,
    ) -> CalendarEvent:
        """Patch an event.

        Args:
            external_id: Event id
            fields: Any of summary, description, start, end, agenda_type,
                client_name
            calendar_id: Calendar holding the event
            category: Used to resolve the calendar when no id is given

        Raises:
            CalendarWriteError: rejected, missing, failed or timed out
        """
        target = self.resolve_calendar_id(calendar_id, category)
        payload: dict = {}
        if fields.get("summary") is not None:
            payload["summary"] = fields["summary"]
        if fields.get("description") is not None:
            payload["description"] = fields["description"]
        if fields.get("start") is not None:
            payload["start"] = self._event_time_payload(fields["start"])
        if fields.get("end") is not None:
            payload["end"] = self._event_time_payload(fields["end"])

        private: dict = {}
        agenda_type = normalize_agenda_type(fields.get("agenda_type"))
        if agenda_type is not None:
            private["agendaType"] = agenda_type.value
        if fields.get("client_name") is not None:
            private["clientName"] = fields["client_name"]
        if private:
            payload["extendedProperties"] = {"private": private}

        response = await self._request(
            "PATCH",
            self._events_path(target, external_id),
            CalendarWriteError,
            json=payload,
        )
        if response.status_code != 200:
            raise CalendarWriteError(
                f"Calendar rejected update of {external_id} ({response.status_code})"
            )

        logger.info(f"Calendar event {external_id} updated on {target}")
        return CalendarEvent.from_api(response.json(), target)

    async def delete_event(
        self,
        external_id: str,
        calendar_id: Optional[str] = None,
        category: Optional[AgendaType] = None,
    ) -> bool:
        """Delete an event, trying every configured calendar.

        404/410 on a calendar means the event is not there; when no
        calendar holds it the event counts as already deleted.

        Returns:
            True if an event was deleted, False if it was already gone

        Raises:
            CalendarWriteError: a calendar failed with anything but 404/410
        """
        failures = []
        for target in self._candidate_calendar_ids(
            self.resolve_calendar_id(calendar_id, category)
        ):
            try:
                response = await self._request(
                    "DELETE",
                    self._events_path(target, external_id),
                    CalendarWriteError,
                )
            except CalendarWriteError as e:
                failures.append(f"{target}: {e.message}")
                continue

            if response.status_code in (200, 204):
                logger.info(f"Calendar event {external_id} deleted from {target}")
                return True
            if response.status_code in GONE_STATUSES:
                continue
            failures.append(f"{target}: HTTP {response.status_code}")

        if failures:
            raise CalendarWriteError(
                f"Could not delete calendar event {external_id}: {'; '.join(failures)}"
            )

        logger.info(f"Calendar event {external_id} already gone")
        return False

    async def list_events(
        self,
        start: datetime,
        end: datetime,
        calendar_id: Optional[str] = None,
        category: Optional[AgendaType] = None,
    ) -> list[CalendarEvent]:
        """List events overlapping [start, end).

        When a category is given only events tagged with it are returned.

        Raises:
            CalendarUnavailableError: failed or timed out
        """
        target = self.resolve_calendar_id(calendar_id, category)
        params: dict = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": 250,
        }

        events: list[CalendarEvent] = []
        while True:
            response = await self._request(
                "GET", self._events_path(target), CalendarUnavailableError, params=params
            )
            if response.status_code != 200:
                raise CalendarUnavailableError(
                    f"Calendar listing failed ({response.status_code})"
                )

            data = response.json()
            for item in data.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                event = CalendarEvent.from_api(item, target)
                if category is not None and event.agenda_type != category:
                    continue
                events.append(event)

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        return events
