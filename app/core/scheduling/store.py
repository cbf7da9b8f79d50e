"""
Appointment persistence and conflict queries.

The store is the authoritative guard against double booking: create() and
interval-changing update() re-check conflicts inside the same transaction
that writes, serialized per category by an in-process lock and, on
PostgreSQL, a transaction-scoped advisory lock.
"""

import asyncio
import logging
import zlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.scheduling.categories import (
    AgendaType,
    normalize_agenda_type,
    require_agenda_type,
    synonyms_for,
)
from app.core.scheduling.timeutil import ensure_utc, utcnow
from app.infra.database import Database
from app.models.database import Appointment

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "summary",
    "description",
    "start_time",
    "end_time",
    "agenda_type",
    "client_name",
    "phone_number",
    "calendar_event_id",
    "calendar_id",
})

REQUIRED_FIELDS = frozenset({"summary", "description", "start_time", "end_time", "agenda_type"})


@dataclass
class AppointmentFilter:
    """Filter for listing appointments."""

    start: Optional[datetime] = None     # appointments ending after this
    end: Optional[datetime] = None       # appointments starting before this
    agenda_type: Optional[AgendaType] = None
    phone_number: Optional[str] = None
    order: str = "desc"                  # "asc" or "desc" by start_time
    limit: int = 200


def _advisory_key(category: AgendaType) -> int:
    """Stable 32-bit key for the per-category advisory lock."""
    return zlib.crc32(f"appointments:{category.value}".encode())


def _normalized(rows: Iterable[Appointment]) -> list[Appointment]:
    """Rewrite legacy category spellings on loaded (detached) rows."""
    result = []
    for row in rows:
        category = normalize_agenda_type(row.agenda_type)
        if category is not None:
            row.agenda_type = category.value
        result.append(row)
    return result


class AppointmentStore:
    """
    Relational store over the `appointments` table.

    Instants are aware UTC datetimes on the way in and out.
    """

    def __init__(self, database: Database):
        """Initialize store.

        Args:
            database: Database owning the engine/session factory
        """
        self._db = database
        self._locks: dict[AgendaType, asyncio.Lock] = {
            category: asyncio.Lock() for category in AgendaType
        }

    # === Conflict queries ===

    def _conflicts_stmt(
        self,
        start: datetime,
        end: datetime,
        category: AgendaType,
        exclude_id: Optional[int] = None,
    ):
        stmt = (
            select(Appointment)
            .where(
                func.lower(Appointment.agenda_type).in_(synonyms_for(category)),
                Appointment.start_time < ensure_utc(end),
                Appointment.end_time > ensure_utc(start),
            )
            .order_by(Appointment.start_time.asc(), Appointment.id.asc())
        )
        if exclude_id is not None:
            stmt = stmt.where(Appointment.id != exclude_id)
        return stmt

    async def find_conflicts(
        self,
        start: datetime,
        end: datetime,
        agenda_type: Any,
        exclude_id: Optional[int] = None,
    ) -> list[Appointment]:
        """Find appointments of the same category overlapping [start, end).

        Overlap is strict: a booking ending exactly when another starts
        does not conflict.

        Args:
            start: Interval start
            end: Interval end
            agenda_type: Category (any known spelling)
            exclude_id: Appointment to ignore (the one being updated)

        Returns:
            Conflicting appointments ordered by start time
        """
        category = require_agenda_type(agenda_type)
        async with self._db.session() as session:
            result = await session.execute(
                self._conflicts_stmt(start, end, category, exclude_id)
            )
            rows = list(result.scalars().all())
        return _normalized(rows)

    async def _lock_category(self, session: AsyncSession, category: AgendaType) -> None:
        """Take the transaction-scoped advisory lock where supported."""
        if self._db.dialect_name == "postgresql":
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": _advisory_key(category)},
            )

    # === Writes ===

    async def create(
        self,
        *,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        agenda_type: Any,
        description: str = "",
        calendar_event_id: Optional[str] = None,
        calendar_id: Optional[str] = None,
        client_name: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Appointment:
        """Insert an appointment after a final in-transaction conflict check.

        Returns:
            The persisted Appointment (id assigned)

        Raises:
            ValidationError: if start is not before end
            ConflictError: if an overlapping booking of the same category exists
        """
        category = require_agenda_type(agenda_type)
        start_time = ensure_utc(start_time)
        end_time = ensure_utc(end_time)
        if start_time >= end_time:
            raise ValidationError("start_time must be before end_time")

        async with self._locks[category]:
            async with self._db.session() as session:
                await self._lock_category(session, category)

                result = await session.execute(
                    self._conflicts_stmt(start_time, end_time, category)
                )
                conflicts = result.scalars().all()
                if conflicts:
                    logger.info(
                        f"Insert rejected: {len(conflicts)} overlapping "
                        f"{category.value} appointment(s)"
                    )
                    raise ConflictError(
                        "Overlapping appointment for the same agenda type",
                        conflict_count=len(conflicts),
                    )

                row = Appointment(
                    calendar_event_id=calendar_event_id,
                    calendar_id=calendar_id,
                    summary=summary,
                    description=description or "",
                    start_time=start_time,
                    end_time=end_time,
                    agenda_type=category.value,
                    client_name=client_name,
                    phone_number=phone_number,
                )
                session.add(row)
                await session.flush()

        logger.info(f"Appointment {row.id} created ({category.value}, {start_time})")
        return row

    async def update(self, appointment_id: int, fields: dict) -> Appointment:
        """Partially update an appointment.

        Unspecified fields keep their values; updated_at is always refreshed.
        When the interval or category changes the conflict check runs again
        inside the writing transaction, excluding the row itself.

        Raises:
            NotFoundError: unknown id
            ValidationError: unknown field or start >= end
            ConflictError: the new interval overlaps another booking
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        current = await self.find_by_id(appointment_id)
        if current is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")

        changes = dict(fields)
        if changes.get("agenda_type") is not None:
            changes["agenda_type"] = require_agenda_type(changes["agenda_type"]).value
        for key in ("start_time", "end_time"):
            if changes.get(key) is not None:
                changes[key] = ensure_utc(changes[key])

        # Rows with an unrecognised stored category must be given one explicitly
        category = require_agenda_type(changes.get("agenda_type") or current.agenda_type)
        reschedules = any(
            key in changes and changes[key] is not None
            for key in ("start_time", "end_time", "agenda_type")
        )

        async with self._locks[category]:
            async with self._db.session() as session:
                await self._lock_category(session, category)

                row = await session.get(Appointment, appointment_id)
                if row is None:
                    raise NotFoundError(f"Appointment {appointment_id} not found")

                new_start = changes.get("start_time") or row.start_time
                new_end = changes.get("end_time") or row.end_time
                if new_start >= new_end:
                    raise ValidationError("start_time must be before end_time")

                if reschedules:
                    result = await session.execute(
                        self._conflicts_stmt(new_start, new_end, category, appointment_id)
                    )
                    conflicts = result.scalars().all()
                    if conflicts:
                        raise ConflictError(
                            "Overlapping appointment for the same agenda type",
                            conflict_count=len(conflicts),
                        )

                for key, value in changes.items():
                    if value is None and key in REQUIRED_FIELDS:
                        continue
                    setattr(row, key, value)
                row.agenda_type = category.value
                # onupdate only fires when a column changed
                row.updated_at = utcnow()
                await session.flush()

        logger.info(f"Appointment {appointment_id} updated: {sorted(changes)}")
        return row

    async def delete(self, appointment_id: int) -> bool:
        """Delete an appointment.

        Returns:
            True if a row was deleted
        """
        async with self._db.session() as session:
            result = await session.execute(
                delete(Appointment).where(Appointment.id == appointment_id)
            )
            deleted = result.rowcount > 0

        if deleted:
            logger.info(f"Appointment {appointment_id} deleted")
        return deleted

    # === Reads ===

    async def find_by_id(self, appointment_id: int) -> Optional[Appointment]:
        """Get an appointment by id."""
        async with self._db.session() as session:
            row = await session.get(Appointment, appointment_id)
        if row is None:
            return None
        return _normalized([row])[0]

    async def find_latest_by_phone(self, phone_number: str) -> Optional[Appointment]:
        """Get the appointment with the latest start for a phone number."""
        async with self._db.session() as session:
            result = await session.execute(
                select(Appointment)
                .where(Appointment.phone_number == phone_number)
                .order_by(Appointment.start_time.desc(), Appointment.id.desc())
                .limit(1)
            )
            row = result.scalars().first()
        if row is None:
            return None
        return _normalized([row])[0]

    async def list(self, filters: Optional[AppointmentFilter] = None) -> list[Appointment]:
        """List appointments by time range, category and phone."""
        filters = filters or AppointmentFilter()
        stmt = select(Appointment)

        if filters.start is not None:
            stmt = stmt.where(Appointment.end_time > ensure_utc(filters.start))
        if filters.end is not None:
            stmt = stmt.where(Appointment.start_time < ensure_utc(filters.end))
        if filters.agenda_type is not None:
            category = require_agenda_type(filters.agenda_type)
            stmt = stmt.where(
                func.lower(Appointment.agenda_type).in_(synonyms_for(category))
            )
        if filters.phone_number:
            stmt = stmt.where(Appointment.phone_number == filters.phone_number)

        if filters.order == "asc":
            stmt = stmt.order_by(Appointment.start_time.asc(), Appointment.id.asc())
        else:
            stmt = stmt.order_by(Appointment.start_time.desc(), Appointment.id.desc())
        stmt = stmt.limit(filters.limit)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            rows = list(result.scalars().all())
        return _normalized(rows)
