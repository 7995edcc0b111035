"""
SQLAlchemy ORM models for the booking engine.

This module defines the tables:
- users: Building staff and council accounts (actors)
- bookings: Elevator / loading bay reservations and their approval state
- audit_log: Append-only record of every state-changing action
- notification_recipients: Staff addresses subscribed to booking events
- payment_records: Paid invoices ingested from Invoice Ninja (the ledger)
- approval_links: Proof that a specific payment approved a specific booking

All models use:
- UUID primary keys (auto-generated)
- Timezone-aware timestamps normalised to UTC
- JSONB (JSON outside PostgreSQL) for flexible metadata storage
"""

from datetime import UTC, date, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """
    TIMESTAMP WITH TIME ZONE that always round-trips aware UTC datetimes.

    Naive values are taken to already be UTC. Backends without native
    timezone support (SQLite) return naive values, which are re-tagged.
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class UserRole(str, PyEnum):
    """Actor roles. COUNCIL and PROPERTY_MANAGER may override conflicts."""

    CONCIERGE = "CONCIERGE"
    COUNCIL = "COUNCIL"
    PROPERTY_MANAGER = "PROPERTY_MANAGER"


class BookingType(str, PyEnum):
    """What the elevator / loading bay is reserved for."""

    MOVE_IN = "MOVE_IN"
    MOVE_OUT = "MOVE_OUT"
    DELIVERY = "DELIVERY"
    RENO = "RENO"


class BookingStatus(str, PyEnum):
    """Booking lifecycle status."""

    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"      # Email intake; treated like SUBMITTED everywhere
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    def __str__(self):
        return self.value


class NotifyEvent(str, PyEnum):
    """Booking events a notification recipient can subscribe to."""

    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class FeeType(str, PyEnum):
    """Classification of a paid invoice."""

    MOVE_IN = "move_in"
    MOVE_OUT = "move_out"
    UNKNOWN = "unknown"

    def __str__(self):
        return self.value


# Statuses that occupy the elevator for conflict detection
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.SUBMITTED,
    BookingStatus.PENDING,
    BookingStatus.APPROVED,
)

# Statuses from which a booking can still be approved or rejected
PRE_APPROVAL_STATUSES = (BookingStatus.SUBMITTED, BookingStatus.PENDING)


# ============================================================================
# Actors
# ============================================================================


class User(Base):
    """
    User model - Concierge, council and property manager accounts.

    Authentication is handled upstream; this table only carries identity
    and role. One CONCIERGE account is configured as the system actor.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"


# ============================================================================
# Bookings
# ============================================================================


class Booking(Base):
    """
    Booking model - A reservation of the freight elevator and/or loading bay.

    start_at/end_at are stored in UTC; move_date is the building-local
    calendar day both timestamps fall on.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Requester
    resident_name: Mapped[str] = mapped_column(String(120), nullable=False)
    resident_email: Mapped[str] = mapped_column(String(255), nullable=False)
    resident_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    public_unit_mask: Mapped[str | None] = mapped_column(String(20), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Reservation
    booking_type: Mapped[BookingType] = mapped_column(
        SQLEnum(BookingType, name="booking_type", values_callable=_enum_values),
        nullable=False,
    )
    move_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    elevator_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    loading_bay_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Approval state
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status", values_callable=_enum_values),
        default=BookingStatus.SUBMITTED,
        nullable=False,
        index=True,
    )
    created_by_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    approved_by_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_payment_reminder_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="check_booking_end_after_start"),
        # Conflict detector scans active elevator bookings by time window
        Index("idx_bookings_elevator_window", "elevator_required", "status", "start_at"),
        # Auto-approval sweep
        Index("idx_bookings_status_created", "status", "created_at"),
        # Payment matching
        Index("idx_bookings_unit_type_status", "unit", "booking_type", "status"),
    )

    def snapshot(self) -> dict[str, Any]:
        """JSON-serialisable view used in audit metadata."""
        return {
            "id": str(self.id),
            "unit": self.unit,
            "booking_type": self.booking_type.value,
            "status": self.status.value,
            "move_date": self.move_date.isoformat(),
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "elevator_required": self.elevator_required,
            "loading_bay_required": self.loading_bay_required,
            "resident_name": self.resident_name,
        }

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, unit='{self.unit}', status='{self.status.value}')>"


# ============================================================================
# Audit & Notifications
# ============================================================================


class AuditLog(Base):
    """
    AuditLog model - One row per state-changing action.

    booking_id is nulled (never cascaded) when a booking is deleted; the
    deletion entry keeps a snapshot in metadata.
    """

    __tablename__ = "audit_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    actor_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    booking_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', booking_id={self.booking_id})>"


class NotificationRecipient(Base):
    """Staff or council address subscribed to a subset of booking events."""

    __tablename__ = "notification_recipients"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def subscribed_to(self, event: NotifyEvent) -> bool:
        return self.enabled and event.value in (self.notify_on or [])

    def __repr__(self) -> str:
        return f"<NotificationRecipient(email='{self.email}', notify_on={self.notify_on})>"


# ============================================================================
# Payment Reconciliation
# ============================================================================


class PaymentRecord(Base):
    """
    PaymentRecord model - A paid invoice as seen by the reconciliation matcher.

    invoice_id is the idempotency key: a second delivery of the same invoice
    never creates or alters a row.
    """

    __tablename__ = "payment_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    fee_type: Mapped[FeeType] = mapped_column(
        SQLEnum(FeeType, name="fee_type", values_callable=_enum_values),
        default=FeeType.UNKNOWN,
        nullable=False,
    )
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dismissed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_payment_records_matchable", "dismissed", "fee_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(invoice_id='{self.invoice_id}', unit='{self.unit}', "
            f"fee_type='{self.fee_type.value}')>"
        )


class ApprovalLink(Base):
    """
    ApprovalLink model - A payment that matched and approved a booking.

    The unique invoice_id guarantees a payment approves at most one booking.
    booking_id is nulled if the booking is later deleted.
    """

    __tablename__ = "approval_links"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("payment_records.invoice_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False)
    approved_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalLink(invoice_id='{self.invoice_id}', booking_id={self.booking_id})>"
