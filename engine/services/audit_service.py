"""
Audit trail writer.

Audit entries are written in the caller's session so they commit or roll
back together with the state change they describe.
"""

import logging
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    BOOKING_SUBMITTED = "BOOKING_SUBMITTED"
    BOOKING_QUICK_APPROVED = "BOOKING_QUICK_APPROVED"
    BOOKING_APPROVED = "BOOKING_APPROVED"
    BOOKING_REJECTED = "BOOKING_REJECTED"
    BOOKING_TIME_EDITED = "BOOKING_TIME_EDITED"
    BOOKING_AUTO_APPROVED = "BOOKING_AUTO_APPROVED"
    BOOKING_PAYMENT_APPROVED = "BOOKING_PAYMENT_APPROVED"
    BOOKING_DELETED = "BOOKING_DELETED"
    CONFLICT_OVERRIDE = "CONFLICT_OVERRIDE"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    RECIPIENT_CREATED = "RECIPIENT_CREATED"
    RECIPIENT_UPDATED = "RECIPIENT_UPDATED"
    RECIPIENT_DELETED = "RECIPIENT_DELETED"
    PAYMENT_FEE_TYPE_SET = "PAYMENT_FEE_TYPE_SET"
    PAYMENT_DISMISSED = "PAYMENT_DISMISSED"
    PAYMENT_RESTORED = "PAYMENT_RESTORED"
    PAYMENT_REMINDER_SENT = "PAYMENT_REMINDER_SENT"


async def log_audit(
    session: AsyncSession,
    actor_id: UUID,
    action: AuditAction,
    booking_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Add an audit entry to the current transaction.

    Args:
        session: Active session (caller commits)
        actor_id: User performing the action (system actor for unattended work)
        action: What happened
        booking_id: Booking the action concerns, if any
        metadata: JSON-serialisable context

    Returns:
        The pending AuditLog row
    """
    entry = AuditLog(
        actor_id=actor_id,
        action=action.value,
        booking_id=booking_id,
        metadata_=metadata,
    )
    session.add(entry)

    logger.info(
        f"Audit: {action.value}",
        extra={"actor_id": actor_id, "booking_id": booking_id},
    )
    return entry
