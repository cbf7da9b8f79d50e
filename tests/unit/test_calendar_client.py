"""Tests for the Google Calendar REST client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import Response

from app.core.errors import (
    CalendarNotConfiguredError,
    CalendarUnavailableError,
    CalendarWriteError,
)
from app.core.scheduling.calendar_client import CalendarEvent, CalendarGateway
from app.core.scheduling.categories import AgendaType
from app.core.scheduling.timeutil import local_datetime

START = local_datetime(2025, 3, 10, 14, 0)
END = local_datetime(2025, 3, 10, 15, 0)

EVENT_RESOURCE = {
    "id": "evt-123",
    "htmlLink": "https://calendar.google.com/event?eid=evt-123",
    "summary": "Atendimento - Reunião Online | Ana",
    "start": {"dateTime": "2025-03-10T14:00:00-03:00", "timeZone": "America/Sao_Paulo"},
    "end": {"dateTime": "2025-03-10T15:00:00-03:00", "timeZone": "America/Sao_Paulo"},
    "extendedProperties": {"private": {"agendaType": "online", "clientName": "Ana"}},
}


def make_gateway(**kwargs) -> CalendarGateway:
    credentials = MagicMock()
    credentials.valid = True
    credentials.token = "test-token"
    kwargs.setdefault("calendar_id", "")
    kwargs.setdefault(
        "category_calendar_ids",
        {AgendaType.ONLINE: "online@group", AgendaType.IN_STORE: "loja@group"},
    )
    return CalendarGateway(credentials=credentials, timeout=2, **kwargs)


def with_responses(gateway: CalendarGateway, *responses) -> AsyncMock:
    client = AsyncMock()
    client.request = AsyncMock(side_effect=list(responses))
    gateway._client = client
    return client.request


class TestCalendarEvent:
    """Test CalendarEvent."""

    def test_from_api(self):
        event = CalendarEvent.from_api(EVENT_RESOURCE, "online@group")

        assert event.external_id == "evt-123"
        assert event.calendar_id == "online@group"
        assert event.link.endswith("evt-123")
        assert event.start == START
        assert event.end == END
        assert event.agenda_type == AgendaType.ONLINE

    def test_from_api_untagged_all_day(self):
        event = CalendarEvent.from_api(
            {"id": "x", "start": {"date": "2025-03-10"}, "end": {"date": "2025-03-11"}},
            "primary",
        )

        assert event.agenda_type is None
        assert event.start is not None

    def test_to_dict(self):
        data = CalendarEvent.from_api(EVENT_RESOURCE, "primary").to_dict()
        assert data["external_id"] == "evt-123"
        assert data["agenda_type"] == "online"


class TestCalendarResolution:
    """Test calendar id priority."""

    def test_explicit_wins(self):
        gateway = make_gateway(calendar_id="shared@group")
        assert gateway.resolve_calendar_id("explicit@group", AgendaType.ONLINE) == "explicit@group"

    def test_shared_before_category(self):
        gateway = make_gateway(calendar_id="shared@group")
        assert gateway.resolve_calendar_id(category=AgendaType.ONLINE) == "shared@group"

    def test_category_calendar(self):
        gateway = make_gateway()
        assert gateway.resolve_calendar_id(category=AgendaType.IN_STORE) == "loja@group"

    def test_primary_fallback(self):
        gateway = make_gateway(category_calendar_ids={})
        assert gateway.resolve_calendar_id(category=AgendaType.ONLINE) == "primary"


class TestCalendarGateway:
    """Test CalendarGateway operations."""

    @pytest.mark.asyncio
    async def test_not_configured(self):
        gateway = CalendarGateway(service_account_key="", credentials=None)

        assert gateway.configured is False
        with pytest.raises(CalendarNotConfiguredError):
            await gateway.create_event("x", "", START, END, AgendaType.ONLINE)

    @pytest.mark.asyncio
    async def test_create_event_payload(self):
        gateway = make_gateway()
        request = with_responses(gateway, Response(200, json=EVENT_RESOURCE))

        event = await gateway.create_event(
            "Atendimento", "Cliente: Ana", START, END, AgendaType.ONLINE, client_name="Ana"
        )

        assert event.external_id == "evt-123"
        assert event.calendar_id == "online@group"
        method, path = request.await_args.args
        assert method == "POST"
        assert path == "/calendars/online%40group/events"
        kwargs = request.await_args.kwargs
        assert kwargs["headers"] == {"Authorization": "Bearer test-token"}
        payload = kwargs["json"]
        assert payload["start"] == {
            "dateTime": "2025-03-10T14:00:00-03:00",
            "timeZone": "America/Sao_Paulo",
        }
        assert payload["extendedProperties"]["private"] == {
            "agendaType": "online",
            "clientName": "Ana",
        }

    @pytest.mark.asyncio
    async def test_create_event_rejected(self):
        gateway = make_gateway()
        with_responses(gateway, Response(403, json={"error": "forbidden"}))

        with pytest.raises(CalendarWriteError):
            await gateway.create_event("x", "", START, END, AgendaType.ONLINE)

    @pytest.mark.asyncio
    async def test_create_event_transport_error(self):
        gateway = make_gateway()
        with_responses(gateway, httpx.ConnectError("refused"))

        with pytest.raises(CalendarWriteError):
            await gateway.create_event("x", "", START, END, AgendaType.ONLINE)

    @pytest.mark.asyncio
    async def test_create_event_timeout(self):
        gateway = make_gateway()
        gateway.timeout = 0.05

        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        client = AsyncMock()
        client.request = slow
        gateway._client = client

        with pytest.raises(CalendarWriteError):
            await gateway.create_event("x", "", START, END, AgendaType.ONLINE)

    @pytest.mark.asyncio
    async def test_update_event_sends_only_given_fields(self):
        gateway = make_gateway()
        request = with_responses(gateway, Response(200, json=EVENT_RESOURCE))

        await gateway.update_event(
            "evt-123", {"summary": "Novo", "start": START, "end": END}, calendar_id="online@group"
        )

        method, path = request.await_args.args
        assert method == "PATCH"
        assert path == "/calendars/online%40group/events/evt-123"
        payload = request.await_args.kwargs["json"]
        assert set(payload) == {"summary", "start", "end"}

    @pytest.mark.asyncio
    async def test_delete_event(self):
        gateway = make_gateway()
        with_responses(gateway, Response(204))

        assert await gateway.delete_event("evt-123", category=AgendaType.ONLINE) is True

    @pytest.mark.asyncio
    async def test_delete_tries_other_calendars(self):
        gateway = make_gateway()
        request = with_responses(gateway, Response(404), Response(204))

        assert await gateway.delete_event("evt-123", category=AgendaType.ONLINE) is True

        paths = [call.args[1] for call in request.await_args_list]
        assert paths == [
            "/calendars/online%40group/events/evt-123",
            "/calendars/loja%40group/events/evt-123",
        ]

    @pytest.mark.asyncio
    async def test_delete_gone_everywhere(self):
        gateway = make_gateway()
        with_responses(gateway, Response(404), Response(410), Response(404))

        assert await gateway.delete_event("evt-123", category=AgendaType.ONLINE) is False

    @pytest.mark.asyncio
    async def test_delete_failure_raises(self):
        gateway = make_gateway()
        with_responses(gateway, Response(500), Response(404), Response(404))

        with pytest.raises(CalendarWriteError):
            await gateway.delete_event("evt-123", category=AgendaType.ONLINE)

    @pytest.mark.asyncio
    async def test_list_events_filters_and_paginates(self):
        gateway = make_gateway()
        cancelled = {**EVENT_RESOURCE, "id": "gone", "status": "cancelled"}
        in_store = {
            **EVENT_RESOURCE,
            "id": "loja-1",
            "extendedProperties": {"private": {"agendaType": "in_store"}},
        }
        untagged = {key: value for key, value in EVENT_RESOURCE.items() if key != "extendedProperties"}
        request = with_responses(
            gateway,
            Response(200, json={"items": [EVENT_RESOURCE, cancelled], "nextPageToken": "p2"}),
            Response(200, json={"items": [in_store, {**untagged, "id": "manual"}]}),
        )

        events = await gateway.list_events(START, END, category=AgendaType.ONLINE)

        assert [e.external_id for e in events] == ["evt-123"]
        assert request.await_count == 2
        params = request.await_args.kwargs["params"]
        assert params["pageToken"] == "p2"
        assert params["timeMin"] == "2025-03-10T17:00:00Z"

    @pytest.mark.asyncio
    async def test_list_events_failure(self):
        gateway = make_gateway()
        with_responses(gateway, Response(500))

        with pytest.raises(CalendarUnavailableError):
            await gateway.list_events(START, END)

    @pytest.mark.asyncio
    async def test_credentials_refresh_failure(self):
        from google.auth.exceptions import RefreshError

        credentials = MagicMock()
        credentials.valid = False
        credentials.refresh.side_effect = RefreshError("bad key")
        gateway = CalendarGateway(credentials=credentials, timeout=2)

        with pytest.raises(CalendarUnavailableError):
            await gateway.create_event("x", "", START, END, AgendaType.ONLINE)
