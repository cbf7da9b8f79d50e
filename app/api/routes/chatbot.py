"""
Chatbot Endpoints

Inbound webhook from the WhatsApp gateway plus operator controls:
session listing and bot pause/resume.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import get_conversation, get_pauses, get_sessions
from app.core.conversation.engine import ConversationEngine, IncomingMessage
from app.core.conversation.session import PauseRegistry, SessionManager
from app.infra.messaging import normalize_chat_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chatbot", tags=["Chatbot"])


class WebhookMessage(BaseModel):
    """Inbound message as posted by the gateway."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Channel message id")
    from_: str = Field(
        ...,
        alias="from",
        description="Sender chat id",
        examples=["5583999999999@c.us"],
    )
    body: str = Field(default="", max_length=4000)
    timestamp: Optional[int] = Field(default=None, description="Epoch seconds")
    sender_name: Optional[str] = Field(default=None, alias="notifyName")
    is_group: bool = Field(default=False, alias="isGroup")


class TurnResponse(BaseModel):
    """What the bot did with the message."""

    action: str
    reply: Optional[str] = None
    state: Optional[str] = None
    appointment_id: Optional[int] = None
    delivered: bool = False


class SessionSummary(BaseModel):
    """One conversation session."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    phone_number: str
    state: str
    customer_name: Optional[str] = None
    agenda_type: Optional[str] = None
    human_handled: bool = False
    updated_at: Optional[datetime] = None


class PauseRequest(BaseModel):
    """Pause the bot globally, or for one chat when phone is given."""

    phone: Optional[str] = Field(default=None, examples=["5583999999999"])
    hours: Optional[float] = Field(default=None, gt=0, le=720)


class ResumeRequest(BaseModel):
    """Resume the bot globally, or for one chat when phone is given."""

    phone: Optional[str] = None


class PauseStatus(BaseModel):
    """Current pauses."""

    paused: bool
    paused_until: Optional[str] = None
    chat_pauses: list[dict]


@router.post(
    "/webhook",
    response_model=TurnResponse,
    summary="Inbound message",
)
async def webhook(
    message: WebhookMessage,
    engine: ConversationEngine = Depends(get_conversation),
) -> TurnResponse:
    result = await engine.handle(
        IncomingMessage(
            message_id=message.id,
            chat_id=message.from_,
            body=message.body,
            timestamp=message.timestamp,
            sender_name=message.sender_name,
            is_group=message.is_group,
        )
    )
    return TurnResponse(**result.to_dict())


@router.get(
    "/sessions",
    response_model=list[SessionSummary],
    summary="List conversation sessions",
)
async def list_sessions(
    limit: int = Query(default=100, ge=1, le=1000),
    sessions: SessionManager = Depends(get_sessions),
) -> list[SessionSummary]:
    rows = await sessions.list_sessions(limit)
    summaries = []
    for row in rows:
        metadata = row.metadata_ or {}
        summaries.append(
            SessionSummary(
                id=row.id,
                phone_number=row.phone_number,
                state=row.state,
                customer_name=metadata.get("customerName"),
                agenda_type=metadata.get("agendaType"),
                human_handled=bool(metadata.get("humanHandled")),
                updated_at=row.updated_at,
            )
        )
    return summaries


@router.post(
    "/pause",
    response_model=PauseStatus,
    summary="Pause the bot",
)
async def pause(
    body: PauseRequest,
    pauses: PauseRegistry = Depends(get_pauses),
) -> PauseStatus:
    if body.phone:
        pauses.pause_chat(normalize_chat_id(body.phone), body.hours)
    else:
        pauses.pause_all(body.hours)
    return PauseStatus(**pauses.status())


@router.post(
    "/resume",
    response_model=PauseStatus,
    summary="Resume the bot",
    responses={404: {"description": "Chat was not paused"}},
)
async def resume(
    body: ResumeRequest,
    pauses: PauseRegistry = Depends(get_pauses),
) -> PauseStatus:
    if body.phone:
        if not pauses.resume_chat(normalize_chat_id(body.phone)):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Chat is not paused",
            )
    else:
        pauses.resume_all()
    return PauseStatus(**pauses.status())


@router.get(
    "/status",
    response_model=PauseStatus,
    summary="Bot pause status",
)
async def pause_status(
    pauses: PauseRegistry = Depends(get_pauses),
) -> PauseStatus:
    return PauseStatus(**pauses.status())
