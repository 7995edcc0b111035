"""
Booking API Endpoints

Public:
- POST /api/bookings - Submit a booking request (SUBMITTED)
- GET /api/public/bookings - Approved bookings for the lobby calendar
- GET /api/permitted-times - Permitted window for a day and booking type

Email intake (shared secret):
- POST /api/intake/email - Admit a request parsed from email (PENDING)

Staff (X-Actor-Id):
- GET /api/admin/bookings/{id}
- POST /api/admin/quick-entry/approve - Create an already APPROVED booking
- PATCH /api/admin/bookings/{id} - Approve / reject / reschedule
- DELETE /api/admin/bookings/{id}
"""

import hmac
import logging
from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, HTTPException, Query, status

from api.dependencies import ActorDep, EngineDep
from api.models.booking_models import (
    BookingResponse,
    PermittedTimesResponse,
    PublicBookingResponse,
    TimeRange,
)
from database.models import BookingType
from engine.permissions import PRIVILEGED_ROLES, require_role
from engine.schemas import BookingRequest, DecisionRequest
from engine.validators.holidays import holiday_name
from engine.validators.slot_policy import permitted_window
from shared.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


class QuickEntryRequest(BookingRequest):
    override_conflict: bool = False


# =============================================================================
# Public
# =============================================================================


@router.post("/api/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def submit_booking(payload: BookingRequest, engine: EngineDep) -> BookingResponse:
    booking = await engine.bookings.submit(payload)
    return BookingResponse.model_validate(booking)


@router.get("/api/public/bookings", response_model=list[PublicBookingResponse])
async def list_public_bookings(engine: EngineDep) -> list[PublicBookingResponse]:
    bookings = await engine.bookings.list_public_bookings()
    return [PublicBookingResponse.from_booking(b) for b in bookings]


@router.get("/api/permitted-times", response_model=PermittedTimesResponse)
async def get_permitted_times(
    engine: EngineDep,
    day: Annotated[date, Query(alias="date")],
    booking_type: Annotated[BookingType, Query(alias="type")],
) -> PermittedTimesResponse:
    window = permitted_window(day, booking_type, engine.bookings.holidays)
    return PermittedTimesResponse(
        day=day,
        booking_type=booking_type,
        kind=window.kind,
        slots=[TimeRange(start=start, end=end) for start, end in window.slots],
        hours=(
            TimeRange(start=window.range_start, end=window.range_end)
            if window.range_start is not None
            else None
        ),
        block_minutes=window.block_minutes,
        description=window.describe(),
        holiday_name=holiday_name(day),
    )


# =============================================================================
# Email intake
# =============================================================================


@router.post("/api/intake/email", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def intake_email_booking(
    payload: BookingRequest,
    engine: EngineDep,
    x_intake_secret: Annotated[str | None, Header()] = None,
) -> BookingResponse:
    """
    Admit a booking request extracted from an inbound email.

    Authentication: X-Intake-Secret must match INTAKE_SHARED_SECRET. The
    endpoint is disabled (404) while no secret is configured.
    """
    secret = get_settings().INTAKE_SHARED_SECRET
    if not secret:
        raise HTTPException(status_code=404, detail="Email intake is disabled")
    if not x_intake_secret or not hmac.compare_digest(x_intake_secret, secret):
        logger.warning("Email intake called with an invalid secret")
        raise HTTPException(status_code=401, detail="Invalid intake secret")

    booking = await engine.bookings.intake(payload)
    return BookingResponse.model_validate(booking)


# =============================================================================
# Staff
# =============================================================================


@router.get("/api/admin/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: UUID, engine: EngineDep, actor: ActorDep) -> BookingResponse:
    require_role(actor, PRIVILEGED_ROLES, "view bookings")
    booking = await engine.bookings.get_booking(booking_id)
    return BookingResponse.model_validate(booking)


@router.post(
    "/api/admin/quick-entry/approve",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def quick_approve_booking(
    payload: QuickEntryRequest, engine: EngineDep, actor: ActorDep
) -> BookingResponse:
    request = BookingRequest.model_validate(payload.model_dump(exclude={"override_conflict"}))
    booking = await engine.bookings.quick_approve(
        request, actor, override_conflict=payload.override_conflict
    )
    return BookingResponse.model_validate(booking)


@router.patch("/api/admin/bookings/{booking_id}", response_model=BookingResponse)
async def decide_booking(
    booking_id: UUID,
    payload: DecisionRequest,
    engine: EngineDep,
    actor: ActorDep,
) -> BookingResponse:
    booking = await engine.bookings.decide(
        booking_id,
        actor,
        status=payload.status,
        override_requested=payload.override_conflict,
        start_at=payload.start_at,
        end_at=payload.end_at,
    )
    return BookingResponse.model_validate(booking)


@router.delete("/api/admin/bookings/{booking_id}")
async def delete_booking(booking_id: UUID, engine: EngineDep, actor: ActorDep) -> dict[str, bool]:
    await engine.admin.delete_booking(booking_id, actor)
    return {"ok": True}
