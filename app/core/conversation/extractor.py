"""
Deterministic booking extraction from pt-BR chat text.

Only absolute dates are accepted (dd/mm/yyyy, dd/mm, yyyy-mm-dd) together
with an explicit time. Relative language ("amanhã", "sexta") is detected so
the engine can ask for an absolute date instead of guessing.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from app.core.scheduling.categories import AgendaType, normalize_agenda_type
from app.core.scheduling.timeutil import local_date, local_datetime, utcnow

logger = logging.getLogger(__name__)

_DATE_FULL = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_DATE_ISO = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_DATE_SHORT = re.compile(r"\b(\d{1,2})/(\d{1,2})\b(?!/)")

_TIME_COLON = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_TIME_H = re.compile(r"\b(\d{1,2})\s*(?:horas?|hs?)\s*(\d{2})?\b")
# Only the accented "às"; a bare "as" is usually the article ("as 2 cadeiras")
_TIME_AS = re.compile(r"\bàs\s+(\d{1,2})\b(?![/:\d])")

_RELATIVE = re.compile(
    r"\bhoje\b|amanh[ãa]|\bsegunda\b|\bter[çc]a\b|\bquarta\b|\bquinta\b|\bsexta\b"
    r"|\bs[áa]bado\b|\bdomingo\b|semana que vem|pr[óo]xima semana"
)

_ONLINE_WORDS = ("online", "vídeo", "video", "reuni")
_IN_STORE_WORDS = ("loja", "visita", "presenc")

_CANCEL_WORDS = ("cancelar", "cancela", "desmarcar")
_RESCHEDULE_WORDS = ("remarcar", "remarca", "alterar", "mudar horário", "mudar horario")


class ChangeIntent(str, Enum):
    """Requested change to an existing appointment."""

    CANCEL = "cancel"
    RESCHEDULE = "reschedule"


@dataclass
class ExtractedBooking:
    """What could be read from one message."""

    start: Optional[datetime] = None
    agenda_type: Optional[AgendaType] = None
    has_date: bool = False
    has_time: bool = False

    @property
    def complete(self) -> bool:
        """Date, time and category were all found."""
        return self.start is not None and self.agenda_type is not None


def extract_time(text: str) -> Optional[tuple[int, int]]:
    """Find an explicit time ("14:30", "14h", "14h30", "às 14")."""
    lowered = text.lower()
    for pattern in (_TIME_COLON, _TIME_H, _TIME_AS):
        match = pattern.search(lowered)
        if not match:
            continue
        hour = int(match.group(1))
        minute = int(match.group(2)) if pattern.groups >= 2 and match.group(2) else 0
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return hour, minute
    return None


def extract_date(text: str, today: Optional[date] = None) -> Optional[date]:
    """Find an absolute date.

    "dd/mm" without a year means the next occurrence of that day.
    Impossible dates (31/02) are ignored.
    """
    today = today or local_date(utcnow())
    lowered = text.lower()

    try:
        match = _DATE_FULL.search(lowered)
        if match:
            day, month, year = (int(g) for g in match.groups())
            return date(year, month, day)

        match = _DATE_ISO.search(lowered)
        if match:
            year, month, day = (int(g) for g in match.groups())
            return date(year, month, day)

        match = _DATE_SHORT.search(lowered)
        if match:
            day, month = (int(g) for g in match.groups())
            candidate = date(today.year, month, day)
            if candidate < today:
                candidate = date(today.year + 1, month, day)
            return candidate
    except ValueError:
        logger.debug(f"Ignoring impossible date in message: {text!r}")
        return None

    return None


def infer_agenda_type(text: str, fallback: Any = None) -> Optional[AgendaType]:
    """Category named in the text, else the fallback (e.g. from session metadata)."""
    lowered = text.lower()
    if any(word in lowered for word in _ONLINE_WORDS):
        return AgendaType.ONLINE
    if any(word in lowered for word in _IN_STORE_WORDS):
        return AgendaType.IN_STORE
    return normalize_agenda_type(fallback)


def has_relative_date(text: str) -> bool:
    """True for "hoje", "amanhã", weekday names, "semana que vem"..."""
    return bool(_RELATIVE.search(text.lower()))


def detect_change_intent(text: str) -> Optional[ChangeIntent]:
    """Cancel or reschedule phrasing. Cancel wins when both appear."""
    lowered = text.lower()
    if any(word in lowered for word in _CANCEL_WORDS):
        return ChangeIntent.CANCEL
    if any(word in lowered for word in _RESCHEDULE_WORDS):
        return ChangeIntent.RESCHEDULE
    return None


def extract_start(text: str, today: Optional[date] = None) -> Optional[datetime]:
    """Absolute date plus explicit time as a UTC instant, or None."""
    day = extract_date(text, today)
    clock = extract_time(text)
    if day is None or clock is None:
        return None
    return local_datetime(day.year, day.month, day.day, clock[0], clock[1])


def extract_booking(
    text: str,
    fallback_agenda_type: Any = None,
    today: Optional[date] = None,
) -> ExtractedBooking:
    """Read {date, time, category} from a message."""
    day = extract_date(text, today)
    clock = extract_time(text)
    result = ExtractedBooking(
        agenda_type=infer_agenda_type(text, fallback_agenda_type),
        has_date=day is not None,
        has_time=clock is not None,
    )
    if day is not None and clock is not None:
        result.start = local_datetime(day.year, day.month, day.day, clock[0], clock[1])
    return result
