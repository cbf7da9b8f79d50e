"""Shared fixtures: an in-memory SQLite database and scheduling collaborators."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from app.core.scheduling.availability import AvailabilityEngine
from app.core.scheduling.calendar_client import CalendarEvent
from app.core.scheduling.store import AppointmentStore
from app.infra.database import Database


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database per test."""
    db = Database(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database):
    return AppointmentStore(database)


@pytest.fixture
def availability(store):
    return AvailabilityEngine(store, calendar=None, check_calendar=False)


@pytest.fixture
def mock_calendar():
    """Configured calendar gateway that accepts every write."""
    calendar = MagicMock()
    calendar.configured = True
    calendar.create_event = AsyncMock(
        return_value=CalendarEvent(
            external_id="evt-1",
            calendar_id="primary",
            link="https://calendar.google.com/event?eid=evt-1",
        )
    )
    calendar.update_event = AsyncMock()
    calendar.delete_event = AsyncMock(return_value=True)
    calendar.list_events = AsyncMock(return_value=[])
    return calendar
