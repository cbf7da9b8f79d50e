"""
Availability decisions and alternative-slot suggestions.

The appointments table is the source of truth for conflicts. When
AVAILABILITY_CHECK_CALENDAR is on, calendar events of the same category
that no database row mirrors also count as conflicts; calendar errors in
that mode are logged and the database answer stands.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Optional

from app.config import get_settings
from app.core.errors import SchedulingError
from app.core.scheduling.calendar_client import CalendarEvent, CalendarGateway
from app.core.scheduling.categories import AgendaType, require_agenda_type
from app.core.scheduling.store import AppointmentFilter, AppointmentStore
from app.core.scheduling.timeutil import (
    business_tz,
    ensure_utc,
    format_range,
    to_local,
    weekday_name,
)

logger = logging.getLogger(__name__)

DAY_ABBREVIATIONS = ("seg", "ter", "qua", "qui", "sex", "sáb", "dom")


@dataclass
class Slot:
    """A candidate or booked interval of a category."""

    start: datetime
    end: datetime
    agenda_type: AgendaType

    @property
    def formatted(self) -> str:
        """Local 'dd/mm/yyyy HH:MM - HH:MM' label."""
        return format_range(self.start, self.end)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "agenda_type": self.agenda_type.value,
            "label": self.formatted,
        }


@dataclass
class Availability:
    """Result of an availability check."""

    available: bool
    conflict_count: int
    calendar_conflicts: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "available": self.available,
            "conflict_count": self.conflict_count,
        }


def _overlaps(start: datetime, end: datetime, other_start, other_end) -> bool:
    return other_start is not None and other_end is not None and (
        other_start < end and other_end > start
    )


class AvailabilityEngine:
    """
    Working-hours policy plus conflict queries.

    Usage:
        engine = AvailabilityEngine(store, calendar)
        result = await engine.check_availability(start, end, "online")
        if not result.available:
            slots = await engine.suggest_alternatives(start, 60, "online")
    """

    def __init__(
        self,
        store: AppointmentStore,
        calendar: Optional[CalendarGateway] = None,
        check_calendar: Optional[bool] = None,
    ):
        """Initialize engine.

        Args:
            store: Appointment store
            calendar: Calendar gateway (used in strict mode only)
            check_calendar: Strict mode flag (defaults to settings)
        """
        settings = get_settings()
        self.store = store
        self.calendar = calendar
        self.check_calendar = (
            settings.availability_check_calendar
            if check_calendar is None
            else check_calendar
        )
        self.opening = time(settings.work_start_hour, 0)
        self.closing = time(settings.work_end_hour, 0)
        self.working_days = settings.working_days_set
        self.step = timedelta(minutes=settings.slot_step_minutes)
        self.default_duration = settings.default_duration_minutes
        self.suggestion_limit = settings.suggestion_limit
        self.horizon = timedelta(days=settings.suggestion_horizon_days)

    # === Working hours ===

    def is_within_working_hours(self, instant: datetime) -> bool:
        """True on a working day between opening (inclusive) and closing (exclusive)."""
        local = to_local(instant)
        if local.weekday() not in self.working_days:
            return False
        return self.opening <= local.time() < self.closing

    def is_slot_within_working_hours(self, start: datetime, end: datetime) -> bool:
        """True when start and end both fall within working hours of one day.

        Closing is exclusive for the end too: a slot ending at 18:00 is out.
        """
        if ensure_utc(end) <= ensure_utc(start):
            return False
        if not (self.is_within_working_hours(start) and self.is_within_working_hours(end)):
            return False
        return to_local(end).date() == to_local(start).date()

    def working_hours_description(self) -> str:
        """Human-readable policy, e.g. '8h às 18h, seg a sex'."""
        hours = f"{self.opening.hour}h às {self.closing.hour}h"
        days = sorted(self.working_days)
        if not days:
            return hours
        if days == list(range(days[0], days[-1] + 1)) and len(days) > 1:
            day_text = f"{DAY_ABBREVIATIONS[days[0]]} a {DAY_ABBREVIATIONS[days[-1]]}"
        else:
            day_text = ", ".join(DAY_ABBREVIATIONS[d] for d in days)
        return f"{hours}, {day_text}"

    def describe_instant(self, instant: datetime) -> dict:
        """Local weekday/hour breakdown used by the working-hours endpoint."""
        local = to_local(instant)
        return {
            "instant": ensure_utc(instant).isoformat(),
            "local_time": local.isoformat(),
            "weekday": weekday_name(instant),
            "hour": local.hour,
            "minute": local.minute,
            "within_working_hours": self.is_within_working_hours(instant),
            "working_hours": self.working_hours_description(),
        }

    # === Availability ===

    async def _calendar_events(
        self,
        start: datetime,
        end: datetime,
        category: AgendaType,
    ) -> Optional[list[CalendarEvent]]:
        """Calendar events for strict mode; None when unavailable."""
        if not self.check_calendar or self.calendar is None or not self.calendar.configured:
            return None
        try:
            return await self.calendar.list_events(start, end, category=category)
        except SchedulingError as e:
            logger.warning(
                f"Calendar check skipped, using database result: {e.message}"
            )
            return None

    async def check_availability(
        self,
        start: datetime,
        end: datetime,
        agenda_type: Any,
        exclude_id: Optional[int] = None,
    ) -> Availability:
        """Decide whether [start, end) is free for a category.

        Args:
            start: Interval start
            end: Interval end
            agenda_type: Category (any known spelling)
            exclude_id: Appointment being moved, ignored as a conflict

        Returns:
            Availability with the number of conflicts found
        """
        category = require_agenda_type(agenda_type)
        conflicts = await self.store.find_conflicts(start, end, category, exclude_id)
        conflict_count = len(conflicts)

        calendar_conflicts = 0
        events = await self._calendar_events(start, end, category)
        if events:
            mirrored = {row.calendar_event_id for row in conflicts if row.calendar_event_id}
            if exclude_id is not None:
                moving = await self.store.find_by_id(exclude_id)
                if moving is not None and moving.calendar_event_id:
                    mirrored.add(moving.calendar_event_id)
            calendar_conflicts = sum(
                1
                for event in events
                if event.external_id not in mirrored
                and _overlaps(start, end, event.start, event.end)
            )
            if calendar_conflicts:
                logger.info(
                    f"{calendar_conflicts} calendar-only conflict(s) for "
                    f"{category.value} {format_range(start, end)}"
                )

        total = conflict_count + calendar_conflicts
        return Availability(
            available=total == 0,
            conflict_count=total,
            calendar_conflicts=calendar_conflicts,
        )

    # === Suggestions ===

    def _round_up_to_grid(self, local: datetime) -> datetime:
        """Round a local datetime up to the next slot boundary."""
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        elapsed = local - midnight
        steps = -(-elapsed // self.step)  # ceiling division
        return midnight + steps * self.step

    def _next_opening(self, local: datetime) -> datetime:
        """Opening time of the day after `local`."""
        next_day = local.date() + timedelta(days=1)
        return datetime.combine(next_day, self.opening, tzinfo=business_tz())

    async def suggest_alternatives(
        self,
        requested: datetime,
        duration_minutes: Optional[int] = None,
        agenda_type: Any = None,
        limit: Optional[int] = None,
        exclude_id: Optional[int] = None,
    ) -> list[Slot]:
        """Walk forward on the slot grid collecting free working-hours slots.

        Starts at the requested instant rounded up to the grid, skips
        non-working days, rolls to the next opening when a day is
        exhausted, and stops at `limit` slots or at the search horizon.

        Returns:
            Free slots in chronological order (possibly empty)
        """
        category = require_agenda_type(agenda_type)
        duration = timedelta(minutes=duration_minutes or self.default_duration)
        limit = self.suggestion_limit if limit is None else limit
        if limit <= 0 or duration <= timedelta(0):
            return []

        requested = ensure_utc(requested)
        horizon_end = requested + self.horizon

        # One query for the whole horizon, then in-memory checks
        rows = await self.store.list(
            AppointmentFilter(
                start=requested,
                end=horizon_end + duration,
                agenda_type=category,
                order="asc",
                limit=10_000,
            )
        )
        busy = [
            (row.start_time, row.end_time)
            for row in rows
            if exclude_id is None or row.id != exclude_id
        ]
        mirrored = {row.calendar_event_id for row in rows if row.calendar_event_id}
        events = await self._calendar_events(requested, horizon_end + duration, category)
        for event in events or []:
            if event.external_id not in mirrored and event.start and event.end:
                busy.append((event.start, event.end))

        slots: list[Slot] = []
        candidate = self._round_up_to_grid(to_local(requested))
        while len(slots) < limit and candidate < horizon_end:
            if candidate.weekday() not in self.working_days:
                candidate = self._next_opening(candidate)
                continue
            if candidate.time() < self.opening:
                candidate = datetime.combine(candidate.date(), self.opening, tzinfo=business_tz())
                continue

            end = candidate + duration
            if not self.is_slot_within_working_hours(candidate, end):
                candidate = self._next_opening(candidate)
                continue

            if not any(_overlaps(candidate, end, s, e) for s, e in busy):
                slots.append(Slot(ensure_utc(candidate), ensure_utc(end), category))
            candidate += self.step

        logger.debug(
            f"Suggested {len(slots)} {category.value} slot(s) from {requested.isoformat()}"
        )
        return slots
