"""Tests for the HTTP surface."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from app.core.conversation.engine import TurnResult
from app.core.conversation.session import PauseRegistry
from app.core.errors import ConflictError, NotFoundError
from app.core.scheduling.availability import Slot
from app.core.scheduling.categories import AgendaType
from app.core.scheduling.timeutil import local_datetime
from app.main import app
from app.models.database import Appointment, ChatSession

MONDAY_14 = local_datetime(2025, 3, 10, 14, 0)
HOUR = timedelta(hours=1)


def make_appointment(**overrides) -> Appointment:
    values = dict(
        id=1,
        summary="Atendimento - Reunião Online | Ana",
        description="",
        start_time=MONDAY_14,
        end_time=MONDAY_14 + HOUR,
        agenda_type="online",
        client_name="Ana",
        phone_number="5583999999999",
        calendar_event_id="evt-1",
        calendar_id="primary",
    )
    values.update(overrides)
    return Appointment(**values)


@pytest.fixture
def container(availability):
    container = MagicMock()
    container.coordinator = MagicMock()
    container.coordinator.create_booking = AsyncMock()
    container.coordinator.update_booking = AsyncMock()
    container.coordinator.cancel_booking = AsyncMock()
    container.coordinator.list_appointments = AsyncMock(return_value=[])
    container.availability = availability
    container.conversation = MagicMock()
    container.conversation.handle = AsyncMock()
    container.sessions = MagicMock()
    container.sessions.list_sessions = AsyncMock(return_value=[])
    container.pauses = PauseRegistry(default_hours=2)
    container.database.check_health = AsyncMock(return_value=True)
    container.redis.check_health = AsyncMock(return_value=False)
    container.calendar.configured = True
    container.claude = None
    return container


@pytest_asyncio.fixture
async def client(container):
    app.state.container = container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    del app.state.container


class TestAppointmentsApi:
    """Test /appointments."""

    @pytest.mark.asyncio
    async def test_create(self, client, container):
        container.coordinator.create_booking.return_value = make_appointment()

        response = await client.post(
            "/appointments",
            json={"start": "2025-03-10 14:00", "agenda_type": "online", "client_name": "Ana"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == 1
        assert body["agenda_type"] == "online"
        request = container.coordinator.create_booking.await_args.args[0]
        assert request.start == "2025-03-10 14:00"
        assert request.client_name == "Ana"

    @pytest.mark.asyncio
    async def test_create_conflict(self, client, container):
        slot = Slot(MONDAY_14 + HOUR, MONDAY_14 + 2 * HOUR, AgendaType.ONLINE)
        container.coordinator.create_booking.side_effect = ConflictError(
            "taken", conflict_count=1, alternatives=[slot]
        )

        response = await client.post(
            "/appointments", json={"start": "2025-03-10 14:30", "agenda_type": "online"}
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "conflict"
        assert body["conflict_count"] == 1
        assert body["alternatives"][0]["label"] == "10/03/2025 15:00 - 16:00"

    @pytest.mark.asyncio
    async def test_create_missing_fields(self, client):
        response = await client.post("/appointments", json={"start": "2025-03-10 14:00"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_sends_only_given_fields(self, client, container):
        container.coordinator.update_booking.return_value = make_appointment(client_name="Bruno")

        response = await client.patch("/appointments/1", json={"client_name": "Bruno"})

        assert response.status_code == 200
        container.coordinator.update_booking.assert_awaited_once_with(1, {"client_name": "Bruno"})

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, client, container):
        container.coordinator.cancel_booking.side_effect = NotFoundError("Appointment 9 not found")

        response = await client.delete("/appointments/9")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_list_with_filters(self, client, container):
        container.coordinator.list_appointments.return_value = [make_appointment()]

        response = await client.get(
            "/appointments", params={"agenda_type": "loja", "order": "asc", "limit": 5}
        )

        assert response.status_code == 200
        assert len(response.json()) == 1
        filters = container.coordinator.list_appointments.await_args.args[0]
        assert filters.agenda_type == AgendaType.IN_STORE
        assert filters.order == "asc"
        assert filters.limit == 5

    @pytest.mark.asyncio
    async def test_list_bad_date(self, client):
        response = await client.get("/appointments", params={"start": "ontem"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestCalendarApi:
    """Test /calendar."""

    @pytest.mark.asyncio
    async def test_availability(self, client):
        response = await client.post(
            "/calendar/availability",
            json={"start": "2025-03-10 14:00", "agenda_type": "online"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["available"] is True
        assert body["within_working_hours"] is True
        assert body["working_hours"] == "8h às 18h, seg a sex"

    @pytest.mark.asyncio
    async def test_availability_unknown_category(self, client):
        response = await client.post(
            "/calendar/availability",
            json={"start": "2025-03-10 14:00", "agenda_type": "telefone"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_suggestions(self, client):
        response = await client.post(
            "/calendar/suggestions",
            json={"start": "2025-03-15 10:00", "agenda_type": "in_store", "limit": 2},
        )

        assert response.status_code == 200
        labels = [slot["label"] for slot in response.json()["slots"]]
        assert labels == ["17/03/2025 08:00 - 09:00", "17/03/2025 08:30 - 09:30"]

    @pytest.mark.asyncio
    async def test_working_hours(self, client):
        response = await client.post(
            "/calendar/working-hours", json={"instant": "2025-03-15T10:00:00-03:00"}
        )

        body = response.json()
        assert body["weekday"] == "sábado"
        assert body["hour"] == 10
        assert body["within_working_hours"] is False


class TestChatbotApi:
    """Test /chatbot."""

    @pytest.mark.asyncio
    async def test_webhook(self, client, container):
        container.conversation.handle.return_value = TurnResult(
            action="replied", reply="Olá!", state="classifying", delivered=True
        )

        response = await client.post(
            "/chatbot/webhook",
            json={
                "id": "MSG1",
                "from": "5583999999999@c.us",
                "body": "Oi",
                "timestamp": 1741626000,
                "notifyName": "Ana",
            },
        )

        assert response.status_code == 200
        assert response.json()["action"] == "replied"
        message = container.conversation.handle.await_args.args[0]
        assert message.chat_id == "5583999999999@c.us"
        assert message.sender_name == "Ana"
        assert message.is_group is False

    @pytest.mark.asyncio
    async def test_sessions(self, client, container):
        container.sessions.list_sessions.return_value = [
            ChatSession(
                id=3,
                phone_number="5583999999999",
                state="completed",
                metadata_={"customerName": "Ana", "agendaType": "online"},
            )
        ]

        response = await client.get("/chatbot/sessions")

        body = response.json()
        assert body[0]["customer_name"] == "Ana"
        assert body[0]["agenda_type"] == "online"
        assert body[0]["human_handled"] is False

    @pytest.mark.asyncio
    async def test_pause_and_resume_chat(self, client, container):
        response = await client.post("/chatbot/pause", json={"phone": "5583999999999@c.us"})
        assert response.status_code == 200
        assert container.pauses.is_paused("5583999999999") is True

        response = await client.post("/chatbot/resume", json={"phone": "5583999999999"})
        assert response.status_code == 200
        assert container.pauses.is_paused("5583999999999") is False

        response = await client.post("/chatbot/resume", json={"phone": "5583999999999"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_global_pause_status(self, client):
        await client.post("/chatbot/pause", json={"hours": 1})

        response = await client.get("/chatbot/status")

        assert response.json()["paused"] is True


class TestHealthApi:
    """Test /health."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_ready_degraded_redis(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["redis"] == "degraded"

    @pytest.mark.asyncio
    async def test_not_ready_without_database(self, client, container):
        container.database.check_health.return_value = False

        response = await client.get("/health/ready")

        assert response.status_code == 503
