"""Conversation state machine for the chat channel."""

import re
from enum import Enum
from typing import Any, Optional


class ConversationState(str, Enum):
    """States of a customer conversation."""

    INITIAL = "initial"
    CLASSIFYING = "classifying"
    COLLECTING_INFO = "collecting_info"
    WAITING_PHOTOS = "waiting_photos"
    SCHEDULING = "scheduling"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ConversationState":
        """Read a stored label; unknown labels restart the conversation."""
        try:
            return cls(value)
        except ValueError:
            return cls.INITIAL


class ServiceType(str, Enum):
    """What the customer wants done."""

    REFORMA = "reforma"          # repair / reupholstery
    FABRICACAO = "fabricacao"    # new piece


_REFORMA_WORDS = ("reform", "conser", "arrum")
_FABRICACAO_WORDS = ("fabric", "fazer", "novo")
_PHOTO_WORDS = ("foto", "image", "imagem")
_SCHEDULING_WORDS = ("agendar", "reunião", "reuniao", "visita")
_CLOSING = re.compile(r"obrigad|valeu|\bok\b")


def classify_service(text: str) -> Optional[ServiceType]:
    """Keyword classification of the requested service."""
    lowered = text.lower()
    if any(word in lowered for word in _REFORMA_WORDS):
        return ServiceType.REFORMA
    if any(word in lowered for word in _FABRICACAO_WORDS):
        return ServiceType.FABRICACAO
    return None


def next_state(
    state: ConversationState,
    message: str,
    metadata: dict[str, Any],
) -> ConversationState:
    """
    Compute the state after a customer message.

    Updates metadata["serviceType"] when the service is identified.
    No state rejects input: when nothing matches the state is kept.
    """
    lowered = message.lower()

    if state == ConversationState.INITIAL:
        return ConversationState.CLASSIFYING

    if state == ConversationState.CLASSIFYING:
        service = classify_service(message)
        if service is not None:
            metadata["serviceType"] = service.value
            return ConversationState.COLLECTING_INFO
        return state

    if state == ConversationState.COLLECTING_INFO:
        if _CLOSING.search(lowered):
            return ConversationState.COMPLETED

        service = metadata.get("serviceType")
        if service == ServiceType.REFORMA.value and any(w in lowered for w in _PHOTO_WORDS):
            return ConversationState.WAITING_PHOTOS
        if service == ServiceType.FABRICACAO.value and any(
            w in lowered for w in _SCHEDULING_WORDS
        ):
            return ConversationState.SCHEDULING
        return state

    if state in (ConversationState.WAITING_PHOTOS, ConversationState.SCHEDULING):
        if _CLOSING.search(lowered):
            return ConversationState.COMPLETED
        return state

    return state
