"""
Database Models

SQLAlchemy ORM models for appointments, chatbot sessions and the inbound
message log.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and returns them aware again."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    One booked slot of a category (online meeting or in-store visit).
    `calendar_event_id` is set when the booking was mirrored to the
    external calendar.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_type_start", "agenda_type", "start_time"),
        Index("idx_appointments_phone", "phone_number"),
        Index("idx_appointments_calendar_event", "calendar_event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    calendar_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    summary: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    agenda_type: Mapped[str] = mapped_column(String(20), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Not persisted; set on freshly booked rows
    calendar_link = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "calendar_event_id": self.calendar_event_id,
            "calendar_id": self.calendar_id,
            "summary": self.summary,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "agenda_type": self.agenda_type,
            "client_name": self.client_name,
            "phone_number": self.phone_number,
            "calendar_link": self.calendar_link,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, type={self.agenda_type}, "
            f"start={self.start_time}, end={self.end_time})>"
        )


class ChatSession(Base, TimestampMixin):
    """
    Session model.

    Conversation state for one phone number on the messaging channel.
    `metadata_` holds history and slot-filling fields as JSON.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_phone", "phone_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)
    state: Mapped[str] = mapped_column(String(50), default="initial", nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    def __repr__(self) -> str:
        return (
            f"<ChatSession(id={self.id}, phone='{self.phone_number}', "
            f"state='{self.state}')>"
        )


class InboundMessage(Base):
    """
    Inbound message log.

    Keyed by the channel's message id so redeliveries are recorded once.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    from_number: Mapped[str] = mapped_column(String(30), nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<InboundMessage(id='{self.id}', from='{self.from_number}')>"
