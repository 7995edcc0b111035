"""Pydantic response models for booking endpoints."""

from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from database.models import Booking, BookingStatus, BookingType
from engine.validators.slot_policy import WindowKind


class BookingResponse(BaseModel):
    """Full booking view for staff and for the requester's own submission."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    resident_name: str
    resident_email: str
    resident_phone: Optional[str] = None
    unit: str
    company_name: Optional[str] = None
    booking_type: BookingType
    move_date: date
    start_at: datetime
    end_at: datetime
    elevator_required: bool
    loading_bay_required: bool
    notes: Optional[str] = None
    status: BookingStatus
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    created_at: datetime


class PublicBookingResponse(BaseModel):
    """Calendar entry safe to show in the lobby: no contact details."""

    id: UUID
    unit: str
    booking_type: BookingType
    start_at: datetime
    end_at: datetime
    elevator_required: bool
    loading_bay_required: bool

    @classmethod
    def from_booking(cls, booking: Booking) -> "PublicBookingResponse":
        return cls(
            id=booking.id,
            unit=booking.public_unit_mask or booking.unit,
            booking_type=booking.booking_type,
            start_at=booking.start_at,
            end_at=booking.end_at,
            elevator_required=booking.elevator_required,
            loading_bay_required=booking.loading_bay_required,
        )


class TimeRange(BaseModel):
    start: time
    end: time


class PermittedTimesResponse(BaseModel):
    """Permitted window for one day and booking type."""

    day: date
    booking_type: BookingType
    kind: WindowKind
    slots: list[TimeRange] = []
    hours: Optional[TimeRange] = None
    block_minutes: Optional[int] = None
    description: str
    holiday_name: Optional[str] = None
