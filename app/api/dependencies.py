"""FastAPI dependencies resolving services from the application container."""

from fastapi import Request

from app.container import ServiceContainer
from app.core.conversation.engine import ConversationEngine
from app.core.conversation.session import PauseRegistry, SessionManager
from app.core.scheduling.availability import AvailabilityEngine
from app.core.scheduling.booking import BookingCoordinator


def get_container(request: Request) -> ServiceContainer:
    """The container built in the lifespan."""
    return request.app.state.container


def get_coordinator(request: Request) -> BookingCoordinator:
    return get_container(request).coordinator


def get_availability(request: Request) -> AvailabilityEngine:
    return get_container(request).availability


def get_conversation(request: Request) -> ConversationEngine:
    return get_container(request).conversation


def get_sessions(request: Request) -> SessionManager:
    return get_container(request).sessions


def get_pauses(request: Request) -> PauseRegistry:
    return get_container(request).pauses
