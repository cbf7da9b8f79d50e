"""
Scheduling error taxonomy.

Every error raised by the scheduling core derives from SchedulingError and
carries an HTTP-equivalent status code, a stable machine code and enough
detail (alternative slots, working hours) for the caller to retry.
"""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for expected scheduling failures."""

    status_code: int = 500
    code: str = "scheduling_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        result: dict[str, Any] = {"error": self.code, "detail": self.message}
        for key, value in self.details.items():
            if value is not None:
                result[key] = value
        return result


class ValidationError(SchedulingError):
    """Missing or unparseable input. User-correctable."""

    status_code = 400
    code = "validation_error"


class OutsideHoursError(SchedulingError):
    """Requested slot falls outside the working-hours window."""

    status_code = 400
    code = "outside_working_hours"

    def __init__(
        self,
        message: str,
        working_hours: str,
        alternatives: Optional[list] = None,
    ):
        super().__init__(message, working_hours=working_hours)
        self.working_hours = working_hours
        self.alternatives = alternatives or []

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["alternatives"] = [slot.to_dict() for slot in self.alternatives]
        return result


class ConflictError(SchedulingError):
    """Overlapping booking exists for the same category."""

    status_code = 409
    code = "conflict"

    def __init__(
        self,
        message: str,
        conflict_count: int = 1,
        alternatives: Optional[list] = None,
    ):
        super().__init__(message, conflict_count=conflict_count)
        self.conflict_count = conflict_count
        self.alternatives = alternatives or []

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["alternatives"] = [slot.to_dict() for slot in self.alternatives]
        return result


class CalendarWriteError(SchedulingError):
    """The calendar service rejected or timed out on a write."""

    status_code = 502
    code = "calendar_write_failed"


class CalendarUnavailableError(SchedulingError):
    """The calendar service cannot be reached or is not configured."""

    status_code = 503
    code = "calendar_unavailable"


class CalendarNotConfiguredError(CalendarUnavailableError):
    """No calendar credentials are configured."""

    code = "calendar_not_configured"


class NotFoundError(SchedulingError):
    """Unknown appointment or session id."""

    status_code = 404
    code = "not_found"
