"""
Calendar Endpoints

Availability checks, alternative-slot suggestions and the working-hours
probe. Read-only: nothing here books or changes appointments.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import get_availability
from app.core.errors import ValidationError
from app.core.scheduling.availability import AvailabilityEngine
from app.core.scheduling.categories import require_agenda_type
from app.core.scheduling.timeutil import parse_instant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


class AvailabilityRequest(BaseModel):
    """Interval to check for one category."""

    start: str = Field(..., examples=["2025-03-10 14:00"])
    end: Optional[str] = Field(default=None, examples=["2025-03-10 15:00"])
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=600)
    agenda_type: str = Field(..., examples=["online"])
    exclude_id: Optional[int] = Field(
        default=None,
        description="Appointment being moved, not counted as a conflict",
    )


class AvailabilityResponse(BaseModel):
    """Availability decision."""

    available: bool
    conflict_count: int
    within_working_hours: bool
    working_hours: str


class SlotResponse(BaseModel):
    """Candidate slot."""

    start: str
    end: str
    agenda_type: str
    label: str


class SuggestionsRequest(BaseModel):
    """Search for free slots from a requested instant."""

    start: str = Field(..., examples=["2025-03-10 14:30"])
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=600)
    agenda_type: str = Field(..., examples=["online"])
    limit: Optional[int] = Field(default=None, ge=1, le=20)


class SuggestionsResponse(BaseModel):
    """Free slots in chronological order."""

    slots: list[SlotResponse]
    working_hours: str


class WorkingHoursRequest(BaseModel):
    """Instant to check against the working-hours policy."""

    instant: str = Field(..., examples=["2025-03-15T10:00:00-03:00"])


class WorkingHoursResponse(BaseModel):
    """Local breakdown of an instant."""

    instant: str
    local_time: str
    weekday: str
    hour: int
    minute: int
    within_working_hours: bool
    working_hours: str


@router.post(
    "/availability",
    response_model=AvailabilityResponse,
    summary="Check whether an interval is free",
    responses={400: {"description": "Invalid interval or category"}},
)
async def check_availability(
    body: AvailabilityRequest,
    engine: AvailabilityEngine = Depends(get_availability),
) -> AvailabilityResponse:
    start = parse_instant(body.start)
    if body.end:
        end = parse_instant(body.end)
    else:
        end = start + timedelta(minutes=body.duration_minutes or engine.default_duration)
    if start >= end:
        raise ValidationError("start must be before end")

    result = await engine.check_availability(start, end, body.agenda_type, body.exclude_id)
    return AvailabilityResponse(
        available=result.available,
        conflict_count=result.conflict_count,
        within_working_hours=engine.is_slot_within_working_hours(start, end),
        working_hours=engine.working_hours_description(),
    )


@router.post(
    "/suggestions",
    response_model=SuggestionsResponse,
    summary="Suggest free slots",
)
async def suggest_slots(
    body: SuggestionsRequest,
    engine: AvailabilityEngine = Depends(get_availability),
) -> SuggestionsResponse:
    slots = await engine.suggest_alternatives(
        parse_instant(body.start),
        duration_minutes=body.duration_minutes,
        agenda_type=require_agenda_type(body.agenda_type),
        limit=body.limit,
    )
    return SuggestionsResponse(
        slots=[SlotResponse(**slot.to_dict()) for slot in slots],
        working_hours=engine.working_hours_description(),
    )


@router.post(
    "/working-hours",
    response_model=WorkingHoursResponse,
    summary="Check an instant against working hours",
)
async def working_hours(
    body: WorkingHoursRequest,
    engine: AvailabilityEngine = Depends(get_availability),
) -> WorkingHoursResponse:
    return WorkingHoursResponse(**engine.describe_instant(parse_instant(body.instant)))
