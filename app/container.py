"""
Service Container

Builds every collaborator once (database, Redis, calendar, Claude,
messaging) and wires the scheduling and conversation layers on top.
Created in the FastAPI lifespan and reached through app.state.
"""

import logging
from typing import Optional

from app.config import get_settings
from app.core.conversation.engine import ConversationEngine
from app.core.conversation.session import PauseRegistry, SessionManager
from app.core.scheduling.availability import AvailabilityEngine
from app.core.scheduling.booking import BookingCoordinator
from app.core.scheduling.calendar_client import CalendarGateway
from app.core.scheduling.store import AppointmentStore
from app.infra.claude import ClaudeClient
from app.infra.database import Database
from app.infra.messaging import WhatsAppGateway
from app.infra.redis import ConversationLock, RedisClient

logger = logging.getLogger(__name__)


def _build_claude() -> Optional[ClaudeClient]:
    """Claude client, or None when no API key is configured."""
    try:
        return ClaudeClient()
    except ValueError as e:
        logger.warning(f"Claude disabled, fallback replies only: {e}")
        return None


class ServiceContainer:
    """
    Explicitly constructed application services.

    Usage:
        container = ServiceContainer()
        await container.startup()
        appointment = await container.coordinator.create_booking(request)
        await container.shutdown()
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        redis_client: Optional[RedisClient] = None,
        calendar: Optional[CalendarGateway] = None,
        claude: Optional[ClaudeClient] = None,
        gateway: Optional[WhatsAppGateway] = None,
    ):
        self.database = database or Database()
        self.redis = redis_client or RedisClient()
        self.calendar = calendar or CalendarGateway()
        self.claude = claude if claude is not None else _build_claude()
        self.gateway = gateway or WhatsAppGateway()

        self.store = AppointmentStore(self.database)
        self.availability = AvailabilityEngine(self.store, self.calendar)
        self.coordinator = BookingCoordinator(self.store, self.availability, self.calendar)

        self.sessions = SessionManager(self.database)
        self.pauses = PauseRegistry()
        self.lock = ConversationLock(self.redis)
        self.conversation = ConversationEngine(
            sessions=self.sessions,
            coordinator=self.coordinator,
            pauses=self.pauses,
            lock=self.lock,
            claude=self.claude,
            gateway=self.gateway,
        )

    async def startup(self) -> None:
        """Connect to dependencies; missing optional ones only degrade."""
        settings = get_settings()

        # Tables are created by scripts/migrate.py outside development
        if settings.is_development:
            try:
                await self.database.create_all()
                logger.info("Database tables initialized")
            except Exception as e:
                logger.warning(f"Database init skipped: {e}")

        if await self.redis.get_client():
            logger.info("Redis connection established")
        else:
            logger.warning("Redis unavailable - conversation locks are process-local")

        if self.calendar.configured:
            logger.info("Google Calendar configured")
        elif settings.require_calendar_for_booking:
            logger.warning(
                "Google Calendar not configured - bookings will be refused "
                "(REQUIRE_CALENDAR_FOR_BOOKING=true)"
            )
        else:
            logger.warning("Google Calendar not configured - bookings stay database-only")

    async def shutdown(self) -> None:
        """Close every connection."""
        await self.calendar.close()
        await self.gateway.close()
        if self.claude is not None:
            await self.claude.close()
        await self.redis.close()
        await self.database.close()
        logger.info("Services closed")
