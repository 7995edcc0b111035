"""
Shared status transitions.

Every path that approves or rejects a booking (manual decision, auto-approval
sweep, payment match) goes through these helpers so the status guard is
re-checked by the UPDATE itself. Whichever path commits first wins; the
others see rowcount 0 and back off.
"""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import PRE_APPROVAL_STATUSES, Booking, BookingStatus

logger = logging.getLogger(__name__)


async def _guarded_transition(
    session: AsyncSession,
    booking_id: UUID,
    from_statuses: tuple[BookingStatus, ...],
    values: dict[str, Any],
) -> bool:
    result = await session.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .where(Booking.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )

    if result.rowcount != 1:
        logger.info(
            f"Transition to {values['status'].value} skipped: booking no longer in "
            f"{[s.value for s in from_statuses]}",
            extra={"booking_id": booking_id},
        )
        return False
    return True


async def transition_to_approved(
    session: AsyncSession,
    booking_id: UUID,
    approver_id: UUID,
    from_statuses: tuple[BookingStatus, ...] = PRE_APPROVAL_STATUSES,
    now: datetime | None = None,
) -> bool:
    """
    Approve a booking if and only if it is still in one of `from_statuses`.

    Args:
        session: Active session (caller commits)
        booking_id: Booking to approve
        approver_id: User recorded as approver
        from_statuses: Statuses the booking must currently hold
        now: Approval timestamp (defaults to current UTC time)

    Returns:
        True if this call performed the transition
    """
    approved_at = now or datetime.now(UTC)
    return await _guarded_transition(
        session,
        booking_id,
        from_statuses,
        {
            "status": BookingStatus.APPROVED,
            "approved_by_id": approver_id,
            "approved_at": approved_at,
            "updated_at": approved_at,
        },
    )


async def transition_to_rejected(
    session: AsyncSession,
    booking_id: UUID,
    now: datetime | None = None,
) -> bool:
    """Reject a booking if it is still awaiting a decision."""
    return await _guarded_transition(
        session,
        booking_id,
        PRE_APPROVAL_STATUSES,
        {
            "status": BookingStatus.REJECTED,
            "updated_at": now or datetime.now(UTC),
        },
    )
