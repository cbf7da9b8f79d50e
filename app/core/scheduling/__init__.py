"""
Scheduling Module

Appointment store, calendar integration, availability policy and booking
orchestration.

Usage:
    from app.core.scheduling import (
        AppointmentStore,
        AvailabilityEngine,
        BookingCoordinator,
        BookingRequest,
        CalendarGateway,
    )

    store = AppointmentStore(database)
    calendar = CalendarGateway()
    availability = AvailabilityEngine(store, calendar)
    coordinator = BookingCoordinator(store, availability, calendar)

    appointment = await coordinator.create_booking(
        BookingRequest(start="2025-03-10 14:00", agenda_type="online")
    )
"""

from app.core.scheduling.availability import Availability, AvailabilityEngine, Slot
from app.core.scheduling.booking import (
    BookingCoordinator,
    BookingRequest,
    BookingStage,
    auto_description,
    auto_summary,
)
from app.core.scheduling.calendar_client import CalendarEvent, CalendarGateway
from app.core.scheduling.categories import (
    AgendaType,
    normalize_agenda_type,
    require_agenda_type,
)
from app.core.scheduling.store import AppointmentFilter, AppointmentStore

__all__ = [
    # Categories
    "AgendaType",
    "normalize_agenda_type",
    "require_agenda_type",
    # Store
    "AppointmentStore",
    "AppointmentFilter",
    # Calendar
    "CalendarGateway",
    "CalendarEvent",
    # Availability
    "AvailabilityEngine",
    "Availability",
    "Slot",
    # Booking
    "BookingCoordinator",
    "BookingRequest",
    "BookingStage",
    "auto_summary",
    "auto_description",
]
