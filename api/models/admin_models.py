"""Pydantic models for staff account and notification recipient endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from database.models import NotifyEvent, UserRole


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: UserRole
    created_at: datetime


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    role: UserRole


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None


class RecipientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: Optional[str] = None
    email: str
    enabled: bool
    notify_on: list[NotifyEvent]
    created_at: datetime


class RecipientCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    email: EmailStr
    enabled: bool = True
    notify_on: list[NotifyEvent]


class RecipientUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""

    name: Optional[str] = Field(default=None, max_length=120)
    email: Optional[EmailStr] = None
    enabled: Optional[bool] = None
    notify_on: Optional[list[NotifyEvent]] = None
