"""
Appointment Endpoints

List, book, move and cancel appointments. Scheduling errors propagate to
the application-level handler, which maps them to their status codes.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import get_coordinator
from app.core.scheduling.booking import BookingCoordinator, BookingRequest
from app.core.scheduling.categories import require_agenda_type
from app.core.scheduling.store import AppointmentFilter
from app.core.scheduling.timeutil import parse_instant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


class AppointmentCreate(BaseModel):
    """Booking request."""

    start: str = Field(
        ...,
        description="Start instant (ISO with offset, local 'YYYY-MM-DD HH:MM' or 'dd/mm/yyyy HH:MM')",
        examples=["2025-03-10 14:00"],
    )
    end: Optional[str] = Field(
        default=None,
        description="End instant; defaults to start plus duration_minutes",
    )
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=600)
    agenda_type: str = Field(..., description="online or in_store", examples=["online"])
    summary: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    client_name: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    calendar_id: Optional[str] = Field(
        default=None,
        description="Explicit target calendar; otherwise resolved from configuration",
    )


class AppointmentUpdate(BaseModel):
    """Partial update. Only fields that are sent are changed."""

    start: Optional[str] = None
    end: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=600)
    agenda_type: Optional[str] = None
    summary: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    client_name: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=30)


class AppointmentResponse(BaseModel):
    """Stored appointment."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    summary: str
    description: str
    start_time: datetime
    end_time: datetime
    agenda_type: str
    client_name: Optional[str] = None
    phone_number: Optional[str] = None
    calendar_event_id: Optional[str] = None
    calendar_id: Optional[str] = None
    calendar_link: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@router.get(
    "",
    response_model=list[AppointmentResponse],
    summary="List appointments",
)
async def list_appointments(
    start: Optional[str] = Query(default=None, description="Appointments ending after this instant"),
    end: Optional[str] = Query(default=None, description="Appointments starting before this instant"),
    agenda_type: Optional[str] = Query(default=None),
    phone_number: Optional[str] = Query(default=None),
    order: Literal["asc", "desc"] = Query(default="desc"),
    limit: int = Query(default=200, ge=1, le=1000),
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> list[AppointmentResponse]:
    filters = AppointmentFilter(
        start=parse_instant(start) if start else None,
        end=parse_instant(end) if end else None,
        agenda_type=require_agenda_type(agenda_type) if agenda_type else None,
        phone_number=phone_number,
        order=order,
        limit=limit,
    )
    rows = await coordinator.list_appointments(filters)
    return [AppointmentResponse.model_validate(row) for row in rows]


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
    responses={
        400: {"description": "Invalid input or outside working hours (with alternatives)"},
        409: {"description": "Slot already taken for the category (with alternatives)"},
        502: {"description": "Calendar write failed; nothing was stored"},
        503: {"description": "Calendar required but not configured or unreachable"},
    },
)
async def create_appointment(
    body: AppointmentCreate,
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> AppointmentResponse:
    appointment = await coordinator.create_booking(BookingRequest(**body.model_dump()))
    return AppointmentResponse.model_validate(appointment)


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Move or edit an appointment",
    responses={
        404: {"description": "Appointment not found"},
        409: {"description": "New slot already taken (with alternatives)"},
    },
)
async def update_appointment(
    appointment_id: int,
    body: AppointmentUpdate,
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> AppointmentResponse:
    changes = body.model_dump(exclude_unset=True)
    appointment = await coordinator.update_booking(appointment_id, changes)
    return AppointmentResponse.model_validate(appointment)


@router.delete(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Cancel an appointment",
    responses={404: {"description": "Appointment not found"}},
)
async def cancel_appointment(
    appointment_id: int,
    coordinator: BookingCoordinator = Depends(get_coordinator),
) -> AppointmentResponse:
    appointment = await coordinator.cancel_booking(appointment_id)
    return AppointmentResponse.model_validate(appointment)
