"""Booking categories and legacy-synonym normalization."""

import unicodedata
from enum import Enum
from typing import Any, Optional

from app.core.errors import ValidationError


class AgendaType(str, Enum):
    """Canonical booking categories."""

    ONLINE = "online"
    IN_STORE = "in_store"


# Every spelling ever persisted or accepted for a category.
_SYNONYMS: dict[AgendaType, tuple[str, ...]] = {
    AgendaType.ONLINE: ("online", "reuniao", "reunião", "video", "vídeo"),
    AgendaType.IN_STORE: ("in_store", "loja", "visita", "presencial", "instore"),
}

_LOOKUP: dict[str, AgendaType] = {
    spelling: category
    for category, spellings in _SYNONYMS.items()
    for spelling in spellings
}

LABELS: dict[AgendaType, str] = {
    AgendaType.ONLINE: "Reunião online",
    AgendaType.IN_STORE: "Visita à loja",
}


def _fold(value: str) -> str:
    """Lowercase and strip accents so 'Reunião' and 'reuniao' compare equal."""
    decomposed = unicodedata.normalize("NFKD", value.strip().lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_agenda_type(value: Any) -> Optional[AgendaType]:
    """Map any known spelling to its canonical category.

    Returns None for empty or unknown values.
    """
    if value is None:
        return None
    if isinstance(value, AgendaType):
        return value
    text = str(value)
    if not text.strip():
        return None
    return _LOOKUP.get(text.strip().lower()) or _LOOKUP.get(_fold(text))


def require_agenda_type(value: Any) -> AgendaType:
    """Like normalize_agenda_type, but unknown values are a ValidationError."""
    category = normalize_agenda_type(value)
    if category is None:
        raise ValidationError(
            f"Unknown agenda type: {value!r}. Use 'online' or 'in_store'."
        )
    return category


def synonyms_for(category: AgendaType) -> tuple[str, ...]:
    """All stored spellings that belong to a category."""
    return _SYNONYMS[category]
