"""
Conversation Engine

Handles one inbound chat message end to end:
1. Filter (groups, staff numbers, duplicates, paused chats)
2. Generate a free-text reply from history (language model)
3. Run the deterministic booking path (cancel / reschedule / book)
4. Override the reply with the deterministic outcome
5. Persist history and state, then send

The generated text never decides a booking outcome: whenever the booking
path acted, the customer sees a message built from its actual result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import get_settings
from app.core.conversation import messages
from app.core.conversation.extractor import (
    ChangeIntent,
    detect_change_intent,
    extract_booking,
    extract_start,
    has_relative_date,
)
from app.core.conversation.session import PauseRegistry, SessionManager
from app.core.conversation.state import ConversationState, next_state
from app.core.errors import NotFoundError, SchedulingError
from app.core.scheduling.booking import BookingCoordinator, BookingRequest
from app.infra.claude import ClaudeClient, ClaudeClientError
from app.infra.messaging import (
    MessagingError,
    WhatsAppGateway,
    is_group_chat,
    normalize_chat_id,
)
from app.infra.redis import ConversationBusyError, ConversationLock

logger = logging.getLogger(__name__)


@dataclass
class IncomingMessage:
    """Inbound message from the messaging channel."""

    message_id: str
    chat_id: str                      # "5583999999999@c.us" or a bare number
    body: str
    timestamp: Optional[int] = None   # epoch seconds
    sender_name: Optional[str] = None
    is_group: bool = False


@dataclass
class TurnResult:
    """Outcome of handling one message."""

    action: str
    reply: Optional[str] = None
    state: Optional[str] = None
    appointment_id: Optional[int] = None
    delivered: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "action": self.action,
            "reply": self.reply,
            "state": self.state,
            "appointment_id": self.appointment_id,
            "delivered": self.delivered,
        }


@dataclass
class _Override:
    """Deterministic text produced by the booking path."""

    text: str
    action: str
    replace: bool = True
    appointment_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ConversationEngine:
    """
    Chat front-end of the booking core.

    Usage:
        engine = ConversationEngine(sessions, coordinator, pauses, lock, claude, gateway)
        result = await engine.handle(IncomingMessage(...))
    """

    def __init__(
        self,
        sessions: SessionManager,
        coordinator: BookingCoordinator,
        pauses: PauseRegistry,
        lock: ConversationLock,
        claude: Optional[ClaudeClient] = None,
        gateway: Optional[WhatsAppGateway] = None,
        employee_numbers: Optional[list[str]] = None,
        history_max_messages: Optional[int] = None,
    ):
        """Initialize engine.

        Args:
            sessions: Session persistence
            coordinator: Booking coordinator
            pauses: Pause registry
            lock: Per-phone lock
            claude: Language model client (None -> fallback text)
            gateway: Outbound messaging (None -> reply only returned)
            employee_numbers: Staff numbers (defaults to settings)
            history_max_messages: History kept in the session
        """
        settings = get_settings()
        self.sessions = sessions
        self.coordinator = coordinator
        self.pauses = pauses
        self.lock = lock
        self.claude = claude
        self.gateway = gateway
        self.employee_numbers = set(
            settings.employee_numbers_list if employee_numbers is None else employee_numbers
        )
        self.history_max = history_max_messages or settings.history_max_messages

    # === Entry point ===

    async def handle(self, message: IncomingMessage) -> TurnResult:
        """Handle one inbound message."""
        if message.is_group or is_group_chat(message.chat_id):
            logger.debug(f"Ignoring group message {message.message_id}")
            return TurnResult(action="ignored_group")

        phone = normalize_chat_id(message.chat_id)
        is_employee = phone in self.employee_numbers
        if is_employee:
            await self.sessions.mark_human_handled(phone)
            self.pauses.pause_chat(phone)

        is_new = await self.sessions.record_message(
            message.message_id, phone, message.body, message.timestamp
        )
        if not is_new:
            return TurnResult(action="duplicate")
        if is_employee:
            return TurnResult(action="employee")
        if self.pauses.is_paused(phone):
            logger.info(f"Chat {phone} paused, message recorded without reply")
            return TurnResult(action="paused")
        if not (message.body or "").strip():
            return TurnResult(action="empty")

        try:
            async with self.lock.hold(phone):
                result = await self._process(phone, message)
                result.delivered = await self._send(phone, result.reply)
                return result
        except ConversationBusyError as e:
            # Message is recorded; the turn holding the lock answers the chat
            logger.warning(f"Skipping turn for {phone}: {e}")
            return TurnResult(action="busy")
        except Exception:
            logger.exception(f"Conversation turn failed for {phone}")
            delivered = await self._send(phone, messages.TECHNICAL_FAILURE)
            return TurnResult(
                action="failed",
                reply=messages.TECHNICAL_FAILURE,
                delivered=delivered,
            )

    async def _send(self, phone: str, text: Optional[str]) -> bool:
        if self.gateway is None or not text:
            return False
        try:
            await self.gateway.send_text(phone, text)
            return True
        except MessagingError as e:
            logger.error(f"Reply to {phone} not delivered: {e}")
            return False

    # === Turn ===

    async def _process(self, phone: str, message: IncomingMessage) -> TurnResult:
        text = message.body.strip()
        chat = await self.sessions.get_or_create(phone)
        state = ConversationState.parse(chat.state)
        metadata = dict(chat.metadata_ or {})
        history = list(metadata.get("history") or [])
        customer_name = message.sender_name or metadata.get("customerName")

        reply = await self._generate(history, text, state, customer_name)

        override = await self._handle_change(phone, text)
        if override is None:
            override = await self._handle_booking(phone, text, metadata, customer_name)

        action = "replied"
        appointment_id = None
        if override is not None:
            action = override.action
            appointment_id = override.appointment_id
            metadata.update(override.metadata)
            reply = override.text if override.replace else f"{override.text}\n\n{reply}"
            logger.info(f"Chat {phone}: {action}")

        history.extend([
            {"role": "user", "content": text},
            {"role": "assistant", "content": reply},
        ])
        metadata["history"] = history[-self.history_max:]
        if customer_name and not metadata.get("customerName"):
            metadata["customerName"] = customer_name

        new_state = next_state(state, text, metadata)
        if action == "booked":
            new_state = ConversationState.COMPLETED

        await self.sessions.save(chat.id, new_state.value, metadata)

        return TurnResult(
            action=action,
            reply=reply,
            state=new_state.value,
            appointment_id=appointment_id,
        )

    async def _generate(
        self,
        history: list[dict],
        text: str,
        state: ConversationState,
        customer_name: Optional[str],
    ) -> str:
        """Free-text reply; the fixed fallback when the model is unavailable."""
        if self.claude is None:
            return messages.FALLBACK_REPLY

        recent = history[-self.history_max:]
        system_prompt = messages.build_system_prompt(
            state.value,
            customer_name,
            self.coordinator.availability.working_hours_description(),
        )
        try:
            response = await self.claude.generate(
                messages=recent + [{"role": "user", "content": text}],
                system_prompt=system_prompt,
            )
        except ClaudeClientError as e:
            logger.error(f"Generative reply failed, using fallback: {e}")
            return messages.FALLBACK_REPLY

        return response.content.strip() or messages.FALLBACK_REPLY

    # === Deterministic booking path ===

    async def _handle_change(self, phone: str, text: str) -> Optional[_Override]:
        """Cancel or reschedule the latest appointment for this phone."""
        intent = detect_change_intent(text)
        if intent is None:
            return None

        # Without a previous appointment the words are ordinary conversation
        latest = await self.coordinator.store.find_latest_by_phone(phone)
        if latest is None:
            return None

        if intent == ChangeIntent.CANCEL:
            try:
                cancelled = await self.coordinator.cancel_booking(latest.id)
            except NotFoundError:
                return _Override(messages.NOTHING_TO_CHANGE, "nothing_to_change")
            return _Override(
                messages.booking_cancelled(cancelled),
                "cancelled",
                replace=False,
                appointment_id=cancelled.id,
                metadata={"lastScheduledEvent": None},
            )

        new_start = extract_start(text)
        if new_start is None:
            return _Override(messages.ASK_ABSOLUTE_DATE, "asked_date")

        try:
            moved = await self.coordinator.update_booking(latest.id, {"start": new_start})
        except SchedulingError as e:
            return _Override(
                messages.booking_rejected(e),
                "reschedule_rejected",
                appointment_id=latest.id,
            )
        return _Override(
            messages.booking_rescheduled(moved),
            "rescheduled",
            replace=False,
            appointment_id=moved.id,
            metadata={"lastScheduledEvent": _event_summary(moved)},
        )

    async def _handle_booking(
        self,
        phone: str,
        text: str,
        metadata: dict[str, Any],
        customer_name: Optional[str],
    ) -> Optional[_Override]:
        """Book from an explicit date, time and category."""
        extracted = extract_booking(text, metadata.get("agendaType"))

        if extracted.start is not None and extracted.agenda_type is None:
            return _Override(messages.ASK_CATEGORY, "asked_category")

        if not extracted.complete:
            if has_relative_date(text):
                return _Override(messages.ASK_ABSOLUTE_DATE, "asked_date")
            if extracted.agenda_type is not None and not metadata.get("agendaType"):
                metadata["agendaType"] = extracted.agenda_type.value
            return None

        category = extracted.agenda_type.value
        try:
            appointment = await self.coordinator.create_booking(
                BookingRequest(
                    start=extracted.start,
                    agenda_type=category,
                    client_name=customer_name,
                    phone_number=phone,
                )
            )
        except SchedulingError as e:
            return _Override(
                messages.booking_rejected(e),
                "booking_rejected",
                metadata={"agendaType": category},
            )

        return _Override(
            messages.booking_confirmed(appointment, appointment.calendar_link),
            "booked",
            appointment_id=appointment.id,
            metadata={
                "agendaType": category,
                "lastScheduledEvent": _event_summary(appointment),
            },
        )


def _event_summary(appointment) -> dict:
    """Compact record of a booking kept in session metadata."""
    return {
        "id": appointment.id,
        "calendarEventId": appointment.calendar_event_id,
        "summary": appointment.summary,
        "start": appointment.start_time.isoformat(),
        "end": appointment.end_time.isoformat(),
        "agendaType": appointment.agenda_type,
        "htmlLink": appointment.calendar_link,
    }
