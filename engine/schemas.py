"""Input models for booking admission."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from database.models import BookingStatus, BookingType


class BookingRequest(BaseModel):
    """Fields supplied by a resident (or a concierge on their behalf)."""

    resident_name: str = Field(..., min_length=1, max_length=120)
    resident_email: EmailStr
    resident_phone: Optional[str] = Field(default=None, max_length=40)
    unit: str = Field(..., min_length=1, max_length=20)
    public_unit_mask: Optional[str] = Field(default=None, max_length=20)
    company_name: Optional[str] = Field(default=None, max_length=120)
    booking_type: BookingType
    start_at: datetime
    end_at: datetime
    elevator_required: bool = True
    loading_bay_required: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("resident_name", "unit")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DecisionRequest(BaseModel):
    """Status change and/or time edit on an existing booking."""

    status: Optional[BookingStatus] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    override_conflict: bool = False
