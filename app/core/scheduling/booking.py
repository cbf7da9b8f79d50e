"""
Booking orchestration.

Each attempt moves through VALIDATING -> CHECKING_AVAILABILITY ->
WRITING_CALENDAR -> PERSISTING -> DONE, or FAILED at any stage.

Create is calendar-first: a failed calendar write aborts the booking and
nothing is persisted. If persisting fails after the event was written, the
event is deleted again. Update and cancel treat the calendar as a
best-effort mirror: failures are logged and the database change proceeds.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from app.config import get_settings
from app.core.errors import (
    CalendarUnavailableError,
    CalendarWriteError,
    ConflictError,
    NotFoundError,
    OutsideHoursError,
    SchedulingError,
    ValidationError,
)
from app.core.scheduling.availability import AvailabilityEngine, Slot
from app.core.scheduling.calendar_client import CalendarEvent, CalendarGateway
from app.core.scheduling.categories import AgendaType, require_agenda_type
from app.core.scheduling.store import AppointmentFilter, AppointmentStore
from app.core.scheduling.timeutil import format_range, parse_instant
from app.models.database import Appointment

logger = logging.getLogger(__name__)

# Alternatives attached to hours/conflict rejections
REJECTION_ALTERNATIVES = 5


class BookingStage(str, Enum):
    """Stages of one booking attempt."""

    VALIDATING = "validating"
    CHECKING_AVAILABILITY = "checking_availability"
    WRITING_CALENDAR = "writing_calendar"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BookingRequest:
    """Input for create_booking. Times accept anything parse_instant does."""

    start: Any
    agenda_type: Any
    end: Any = None
    duration_minutes: Optional[int] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    client_name: Optional[str] = None
    phone_number: Optional[str] = None
    calendar_id: Optional[str] = None


def auto_summary(category: AgendaType, client_name: Optional[str] = None) -> str:
    """Default event title for a booking."""
    title = (
        "Atendimento - Reunião Online"
        if category == AgendaType.ONLINE
        else "Atendimento - Visita à Loja"
    )
    return f"{title} | {client_name}" if client_name else title


def auto_description(
    category: AgendaType,
    client_name: Optional[str] = None,
    phone_number: Optional[str] = None,
) -> str:
    """Default event description listing client, phone, type and location."""
    location = "Online" if category == AgendaType.ONLINE else "Loja"
    return (
        f"Cliente: {client_name or ''}\n"
        f"WhatsApp: {phone_number or ''}\n"
        f"Tipo: {category.value}\n"
        f"Local: {location}"
    )


class BookingCoordinator:
    """
    Creates, moves and cancels appointments across calendar and database.

    Usage:
        coordinator = BookingCoordinator(store, availability, calendar)
        appointment = await coordinator.create_booking(
            BookingRequest(start="2025-03-10 14:00", agenda_type="online")
        )
    """

    def __init__(
        self,
        store: AppointmentStore,
        availability: AvailabilityEngine,
        calendar: Optional[CalendarGateway] = None,
        require_calendar: Optional[bool] = None,
        calendar_categories: Optional[list[str]] = None,
    ):
        """Initialize coordinator.

        Args:
            store: Appointment store
            availability: Availability engine
            calendar: Calendar gateway (None behaves as unconfigured)
            require_calendar: Refuse bookings when the calendar is not
                configured (defaults to settings)
            calendar_categories: Categories mirrored to the calendar
        """
        settings = get_settings()
        self.store = store
        self.availability = availability
        self.calendar = calendar
        self.require_calendar = (
            settings.require_calendar_for_booking
            if require_calendar is None
            else require_calendar
        )
        self.calendar_categories = set(
            settings.calendar_categories_list
            if calendar_categories is None
            else calendar_categories
        )
        self.default_duration = settings.default_duration_minutes

    def _stage(self, label: str, stage: BookingStage) -> BookingStage:
        logger.debug(f"Booking {label}: {stage.value}")
        return stage

    @property
    def calendar_ready(self) -> bool:
        return self.calendar is not None and self.calendar.configured

    def _mirrors(self, category: AgendaType) -> bool:
        return category.value in self.calendar_categories

    async def _alternatives(
        self,
        start: datetime,
        end: datetime,
        category: AgendaType,
        exclude_id: Optional[int] = None,
    ) -> list[Slot]:
        duration = int((end - start).total_seconds() // 60)
        return await self.availability.suggest_alternatives(
            start,
            duration,
            category,
            limit=REJECTION_ALTERNATIVES,
            exclude_id=exclude_id,
        )

    async def _ensure_within_hours(
        self,
        start: datetime,
        end: datetime,
        category: AgendaType,
        exclude_id: Optional[int] = None,
    ) -> None:
        """Reject slots outside working hours, with alternatives."""
        if not self.availability.is_slot_within_working_hours(start, end):
            raise OutsideHoursError(
                f"Requested time {format_range(start, end)} is outside working hours",
                working_hours=self.availability.working_hours_description(),
                alternatives=await self._alternatives(start, end, category, exclude_id),
            )

    async def _ensure_available(
        self,
        start: datetime,
        end: datetime,
        category: AgendaType,
        exclude_id: Optional[int] = None,
    ) -> None:
        result = await self.availability.check_availability(
            start, end, category, exclude_id=exclude_id
        )
        if not result.available:
            raise ConflictError(
                f"Time {format_range(start, end)} is already booked for {category.value}",
                conflict_count=result.conflict_count,
                alternatives=await self._alternatives(start, end, category, exclude_id),
            )

    # === Create ===

    async def _write_calendar(
        self,
        request: BookingRequest,
        category: AgendaType,
        start: datetime,
        end: datetime,
        summary: str,
        description: str,
    ) -> Optional[CalendarEvent]:
        """Write the calendar event, or skip it when allowed."""
        if not self._mirrors(category):
            return None

        if not self.calendar_ready:
            if self.require_calendar:
                raise CalendarUnavailableError(
                    "Calendar is not configured; bookings require a calendar event"
                )
            logger.warning("Calendar not configured, booking without calendar event")
            return None

        try:
            return await self.calendar.create_event(
                summary=summary,
                description=description,
                start=start,
                end=end,
                category=category,
                client_name=request.client_name,
                calendar_id=request.calendar_id,
            )
        except CalendarWriteError:
            raise
        except CalendarUnavailableError as e:
            raise CalendarWriteError(f"Calendar write failed: {e.message}") from e

    async def _discard_event(self, event: CalendarEvent) -> None:
        """Remove an event whose booking could not be persisted."""
        try:
            await self.calendar.delete_event(event.external_id, calendar_id=event.calendar_id)
            logger.info(f"Rolled back calendar event {event.external_id}")
        except SchedulingError as e:
            logger.error(
                f"Orphan calendar event {event.external_id} on {event.calendar_id}: "
                f"{e.message}"
            )

    async def create_booking(self, request: BookingRequest) -> Appointment:
        """Book a slot.

        Raises:
            ValidationError: missing or unparseable fields
            OutsideHoursError: slot outside working hours (with alternatives)
            ConflictError: slot taken for the category (with alternatives)
            CalendarWriteError: calendar write failed, nothing persisted
            CalendarUnavailableError: calendar required but not configured
        """
        label = "new"
        stage = self._stage(label, BookingStage.VALIDATING)
        event: Optional[CalendarEvent] = None
        try:
            if request.start is None or request.start == "":
                raise ValidationError("start is required")
            if request.agenda_type is None or request.agenda_type == "":
                raise ValidationError("agenda_type is required")
            category = require_agenda_type(request.agenda_type)
            start = parse_instant(request.start)
            if request.end not in (None, ""):
                end = parse_instant(request.end)
            else:
                minutes = request.duration_minutes or self.default_duration
                end = start + timedelta(minutes=minutes)
            if start >= end:
                raise ValidationError("start must be before end")

            label = f"{category.value} {format_range(start, end)}"
            summary = request.summary or auto_summary(category, request.client_name)
            description = request.description or auto_description(
                category, request.client_name, request.phone_number
            )

            await self._ensure_within_hours(start, end, category)

            stage = self._stage(label, BookingStage.CHECKING_AVAILABILITY)
            await self._ensure_available(start, end, category)

            stage = self._stage(label, BookingStage.WRITING_CALENDAR)
            event = await self._write_calendar(
                request, category, start, end, summary, description
            )

            stage = self._stage(label, BookingStage.PERSISTING)
            try:
                appointment = await self.store.create(
                    summary=summary,
                    description=description,
                    start_time=start,
                    end_time=end,
                    agenda_type=category,
                    calendar_event_id=event.external_id if event else None,
                    calendar_id=event.calendar_id if event else None,
                    client_name=request.client_name,
                    phone_number=request.phone_number,
                )
            except Exception:
                if event is not None:
                    await self._discard_event(event)
                raise

        except ConflictError as e:
            if stage == BookingStage.PERSISTING and not e.alternatives:
                e.alternatives = await self._alternatives(start, end, category)
            logger.info(f"Booking {label}: {BookingStage.FAILED.value} at {stage.value} ({e.message})")
            raise
        except SchedulingError as e:
            logger.info(f"Booking {label}: {BookingStage.FAILED.value} at {stage.value} ({e.message})")
            raise
        except Exception:
            logger.exception(f"Booking {label}: {BookingStage.FAILED.value} at {stage.value}")
            raise

        self._stage(label, BookingStage.DONE)
        logger.info(
            f"Booked appointment {appointment.id} ({label}), "
            f"calendar event: {appointment.calendar_event_id}"
        )
        appointment.calendar_link = event.link if event else None
        return appointment

    # === Update ===

    async def update_booking(self, appointment_id: int, changes: dict) -> Appointment:
        """Move or edit a booking.

        Args:
            appointment_id: Appointment id
            changes: Any of start, end, duration_minutes, agenda_type,
                summary, description, client_name, phone_number. A new start
                without an end keeps the current duration.

        Raises:
            NotFoundError, ValidationError, OutsideHoursError, ConflictError
        """
        current = await self.store.find_by_id(appointment_id)
        if current is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")

        label = f"#{appointment_id}"
        stage = self._stage(label, BookingStage.VALIDATING)
        try:
            category = (
                require_agenda_type(changes["agenda_type"])
                if changes.get("agenda_type") not in (None, "")
                else require_agenda_type(current.agenda_type)
            )
            start = (
                parse_instant(changes["start"])
                if changes.get("start") not in (None, "")
                else current.start_time
            )
            if changes.get("end") not in (None, ""):
                end = parse_instant(changes["end"])
            elif changes.get("start") not in (None, "") or changes.get("duration_minutes"):
                duration = (
                    timedelta(minutes=changes["duration_minutes"])
                    if changes.get("duration_minutes")
                    else current.end_time - current.start_time
                )
                end = start + duration
            else:
                end = current.end_time
            if start >= end:
                raise ValidationError("start must be before end")

            fields: dict = {
                key: changes[key]
                for key in ("summary", "description", "client_name", "phone_number")
                if key in changes and changes[key] is not None
            }
            rescheduled = (
                start != current.start_time
                or end != current.end_time
                or category.value != current.agenda_type
            )
            if rescheduled:
                fields.update(start_time=start, end_time=end, agenda_type=category)
                await self._ensure_within_hours(start, end, category, appointment_id)
                stage = self._stage(label, BookingStage.CHECKING_AVAILABILITY)
                await self._ensure_available(start, end, category, appointment_id)

            stage = self._stage(label, BookingStage.WRITING_CALENDAR)
            patched = await self._patch_calendar(current, fields, category)

            stage = self._stage(label, BookingStage.PERSISTING)
            try:
                appointment = await self.store.update(appointment_id, fields)
            except ConflictError as e:
                if patched:
                    await self._restore_calendar(current)
                e.alternatives = await self._alternatives(start, end, category, appointment_id)
                raise

        except SchedulingError as e:
            logger.info(f"Update {label}: {BookingStage.FAILED.value} at {stage.value} ({e.message})")
            raise

        self._stage(label, BookingStage.DONE)
        logger.info(f"Updated appointment {appointment_id}: {sorted(fields)}")
        return appointment

    async def _patch_calendar(
        self,
        current: Appointment,
        fields: dict,
        category: AgendaType,
    ) -> bool:
        """Best-effort calendar patch. Returns True when the event was patched."""
        if not current.calendar_event_id or not fields:
            return False
        if not self.calendar_ready:
            logger.warning(
                f"Calendar not configured, event {current.calendar_event_id} not updated"
            )
            return False

        try:
            await self.calendar.update_event(
                current.calendar_event_id,
                {
                    "summary": fields.get("summary"),
                    "description": fields.get("description"),
                    "start": fields.get("start_time"),
                    "end": fields.get("end_time"),
                    "agenda_type": fields.get("agenda_type"),
                    "client_name": fields.get("client_name"),
                },
                calendar_id=current.calendar_id,
                category=category,
            )
            return True
        except SchedulingError as e:
            logger.warning(
                f"Calendar update failed for event {current.calendar_event_id}, "
                f"database updated anyway: {e.message}"
            )
            return False

    async def _restore_calendar(self, previous: Appointment) -> None:
        """Put a patched event back to the booking's persisted values."""
        try:
            await self.calendar.update_event(
                previous.calendar_event_id,
                {
                    "summary": previous.summary,
                    "description": previous.description,
                    "start": previous.start_time,
                    "end": previous.end_time,
                    "agenda_type": previous.agenda_type,
                },
                calendar_id=previous.calendar_id,
            )
        except SchedulingError as e:
            logger.error(
                f"Calendar event {previous.calendar_event_id} left out of sync: {e.message}"
            )

    # === Cancel ===

    async def cancel_booking(self, appointment_id: int) -> Appointment:
        """Cancel a booking.

        The calendar event is removed first, best effort; the row is deleted
        even when the calendar is unavailable.

        Returns:
            The deleted appointment

        Raises:
            NotFoundError: unknown id
        """
        appointment = await self.store.find_by_id(appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")

        if appointment.calendar_event_id:
            if self.calendar_ready:
                try:
                    await self.calendar.delete_event(
                        appointment.calendar_event_id,
                        calendar_id=appointment.calendar_id,
                        category=require_agenda_type(appointment.agenda_type),
                    )
                except SchedulingError as e:
                    logger.warning(
                        f"Calendar delete failed for event {appointment.calendar_event_id}, "
                        f"removing appointment {appointment_id} anyway: {e.message}"
                    )
            else:
                logger.warning(
                    f"Calendar not configured, event {appointment.calendar_event_id} kept"
                )

        await self.store.delete(appointment_id)
        logger.info(f"Cancelled appointment {appointment_id}")
        return appointment

    async def list_appointments(
        self, filters: Optional[AppointmentFilter] = None
    ) -> list[Appointment]:
        """List appointments."""
        return await self.store.list(filters)
