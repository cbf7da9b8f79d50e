"""
SQL-backed conversation sessions, the inbound message log, and bot pauses.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.config import get_settings
from app.core.conversation.state import ConversationState
from app.core.errors import NotFoundError
from app.core.scheduling.timeutil import utcnow
from app.infra.database import Database
from app.models.database import ChatSession, InboundMessage

logger = logging.getLogger(__name__)


class SessionManager:
    """
    One ChatSession row per phone number.

    Sessions are created lazily on the first inbound message and never
    deleted here.
    """

    def __init__(self, database: Database):
        self._db = database

    async def get_or_create(self, phone_number: str) -> ChatSession:
        """Load the session for a phone, creating it in the initial state."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ChatSession)
                .where(ChatSession.phone_number == phone_number)
                .order_by(ChatSession.id.asc())
                .limit(1)
            )
            row = result.scalars().first()
            if row is None:
                row = ChatSession(
                    phone_number=phone_number,
                    state=ConversationState.INITIAL.value,
                    metadata_={},
                )
                session.add(row)
                await session.flush()
                logger.info(f"Session created for {phone_number}")
        return row

    async def save(self, session_id: int, state: str, metadata: dict[str, Any]) -> None:
        """Persist state and metadata after a turn."""
        async with self._db.session() as session:
            row = await session.get(ChatSession, session_id)
            if row is None:
                raise NotFoundError(f"Session {session_id} not found")
            row.state = state
            row.metadata_ = dict(metadata)
            row.updated_at = utcnow()

    async def mark_human_handled(self, phone_number: str) -> bool:
        """Flag a session as taken over by staff. Returns False if none exists."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ChatSession).where(ChatSession.phone_number == phone_number)
            )
            row = result.scalars().first()
            if row is None:
                return False
            metadata = dict(row.metadata_ or {})
            metadata["humanHandled"] = True
            metadata["humanHandledAt"] = utcnow().isoformat()
            row.metadata_ = metadata
            row.updated_at = utcnow()
        logger.info(f"Chat {phone_number} marked as human-handled")
        return True

    async def list_sessions(self, limit: int = 100) -> list[ChatSession]:
        """Sessions, most recently active first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ChatSession).order_by(ChatSession.updated_at.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def record_message(
        self,
        message_id: str,
        from_number: str,
        body: Optional[str],
        timestamp: Optional[int] = None,
    ) -> bool:
        """Log an inbound message once.

        Args:
            message_id: Channel message id
            from_number: Sender phone
            body: Text
            timestamp: Epoch seconds from the channel (stored as ms)

        Returns:
            True if the message is new, False for a redelivery
        """
        ts_ms = int(timestamp * 1000) if timestamp else int(utcnow().timestamp() * 1000)
        values = {
            "id": message_id,
            "from_number": from_number,
            "body": body,
            "timestamp": ts_ms,
            "created_at": utcnow(),
        }

        insert = pg_insert if self._db.dialect_name == "postgresql" else sqlite_insert
        stmt = insert(InboundMessage).values(**values).on_conflict_do_nothing(
            index_elements=["id"]
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            inserted = result.rowcount > 0

        if not inserted:
            logger.info(f"Duplicate message {message_id} ignored")
        return inserted


class PauseRegistry:
    """
    Global and per-chat bot pauses (in process).

    Paused chats still have their messages recorded but get no reply.
    """

    def __init__(self, default_hours: Optional[float] = None):
        self.default_hours = default_hours or get_settings().human_pause_hours
        self._paused_until: Optional[datetime] = None
        self._chat_pauses: dict[str, datetime] = {}

    def pause_all(self, hours: Optional[float] = None) -> datetime:
        """Pause the bot for every chat."""
        self._paused_until = utcnow() + timedelta(hours=hours or self.default_hours)
        logger.info(f"Bot paused globally until {self._paused_until.isoformat()}")
        return self._paused_until

    def resume_all(self) -> None:
        """Lift the global pause."""
        self._paused_until = None
        logger.info("Bot resumed globally")

    def pause_chat(self, phone_number: str, hours: Optional[float] = None) -> datetime:
        """Pause the bot for one chat."""
        until = utcnow() + timedelta(hours=hours or self.default_hours)
        self._chat_pauses[phone_number] = until
        logger.info(f"Chat {phone_number} paused until {until.isoformat()}")
        return until

    def resume_chat(self, phone_number: str) -> bool:
        """Lift a chat pause. Returns False if the chat was not paused."""
        if self._chat_pauses.pop(phone_number, None) is None:
            return False
        logger.info(f"Chat {phone_number} resumed")
        return True

    def is_paused(self, phone_number: Optional[str] = None) -> bool:
        """Whether replies are suspended (globally or for the chat)."""
        now = utcnow()
        if self._paused_until is not None:
            if now < self._paused_until:
                return True
            self._paused_until = None

        if phone_number and phone_number in self._chat_pauses:
            if now < self._chat_pauses[phone_number]:
                return True
            del self._chat_pauses[phone_number]

        return False

    def status(self) -> dict:
        """Current pauses."""
        return {
            "paused": self.is_paused(),
            "paused_until": self._paused_until.isoformat() if self._paused_until else None,
            "chat_pauses": [
                {"phone": phone, "paused_until": until.isoformat()}
                for phone, until in self._chat_pauses.items()
                if until > utcnow()
            ],
        }
