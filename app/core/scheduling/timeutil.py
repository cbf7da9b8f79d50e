"""
Date/time normalization for the business timezone.

Every instant handled by the scheduling core is an aware UTC datetime.
Wall-clock input without zone information is read as local time in the
business timezone, a fixed UTC offset with no daylight saving, so results
never depend on the host machine's timezone.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from app.config import settings
from app.core.errors import ValidationError

_TZ_SUFFIX = re.compile(r"(?:[zZ]|[+-]\d{2}:?\d{2})$")
_NAIVE_ISO = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2})(?::(\d{2}))?$"
)
_BR_DATETIME = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{1,2}):(\d{2}))?$"
)

WEEKDAY_NAMES = (
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
    "domingo",
)


def business_tz() -> timezone:
    """The fixed-offset business timezone."""
    return timezone(timedelta(hours=settings.business_utc_offset_hours))


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_datetime(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
) -> datetime:
    """Build the UTC instant for a wall-clock time in the business timezone."""
    local = datetime(year, month, day, hour, minute, second, tzinfo=business_tz())
    return local.astimezone(timezone.utc)


def to_local(instant: datetime) -> datetime:
    """Convert an instant to business-local wall-clock time."""
    return ensure_utc(instant).astimezone(business_tz())


def local_date(instant: datetime) -> date:
    """Business-local calendar date of an instant."""
    return to_local(instant).date()


def parse_instant(value: Any) -> datetime:
    """Parse heterogeneous date/time input into an aware UTC datetime.

    Accepted forms:
    - aware datetime: converted literally
    - naive datetime: read as business-local wall clock
    - int/float: epoch seconds (milliseconds when the value is that large)
    - string with explicit offset or Z: parsed literally
    - "YYYY-MM-DD HH:MM[:SS]" (space or T): business-local
    - other ISO strings and "dd/mm/yyyy [HH:MM]": best effort, local

    Raises:
        ValidationError: if the value is empty or cannot be parsed
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Date/time value is required")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=business_tz()).astimezone(timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, bool):
        raise ValidationError(f"Invalid date/time value: {value!r}")

    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e

    text = str(value).strip()

    try:
        if _TZ_SUFFIX.search(text):
            return _parse_with_offset(text)

        match = _NAIVE_ISO.match(text)
        if match:
            y, mo, d, h, mi, s = match.groups()
            return local_datetime(
                int(y), int(mo), int(d), int(h), int(mi), int(s or 0)
            )

        return _parse_best_effort(text)
    except ValueError as e:
        raise ValidationError(f"Invalid date/time value: {text!r}") from e


def _parse_with_offset(text: str) -> datetime:
    """Parse a string that carries its own offset."""
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    elif re.search(r"[+-]\d{4}$", text):
        text = f"{text[:-2]}:{text[-2:]}"
    parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    return parsed.astimezone(timezone.utc)


def _parse_best_effort(text: str) -> datetime:
    """Last-resort parsing for formats outside the canonical ones."""
    match = _BR_DATETIME.match(text)
    if match:
        d, mo, y, h, mi = match.groups()
        return local_datetime(int(y), int(mo), int(d), int(h or 0), int(mi or 0))

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=business_tz()).astimezone(timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_local(instant: datetime) -> str:
    """Format an instant as dd/mm/yyyy HH:MM in business-local time."""
    return to_local(instant).strftime("%d/%m/%Y %H:%M")


def format_range(start: datetime, end: datetime) -> str:
    """Format an interval as 'dd/mm/yyyy HH:MM - HH:MM'."""
    return f"{format_local(start)} - {to_local(end).strftime('%H:%M')}"


def weekday_name(instant: datetime) -> str:
    """Portuguese weekday name of an instant in business-local time."""
    return WEEKDAY_NAMES[to_local(instant).weekday()]
