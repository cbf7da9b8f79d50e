"""
Conversation Module

Chat-channel front-end of the booking core: session persistence, the
conversation state machine, deterministic extraction and reply templates.

Usage:
    from app.core.conversation import ConversationEngine, IncomingMessage

    result = await engine.handle(
        IncomingMessage(message_id="ABC", chat_id="5583999999999@c.us", body="Oi")
    )
    print(result.reply)
"""

from app.core.conversation.engine import ConversationEngine, IncomingMessage, TurnResult
from app.core.conversation.session import PauseRegistry, SessionManager
from app.core.conversation.state import ConversationState, next_state

__all__ = [
    "ConversationEngine",
    "IncomingMessage",
    "TurnResult",
    "SessionManager",
    "PauseRegistry",
    "ConversationState",
    "next_state",
]
