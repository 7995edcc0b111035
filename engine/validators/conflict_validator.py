"""
Conflict Detector - Buffered elevator overlap checks.

Only elevator usage is conflict-checked; the loading bay is recorded on the
booking but never blocks another booking. Two elevator bookings conflict when
the candidate, widened by the buffer on both ends, overlaps an active booking:

    candidate_start - buffer < existing_end AND candidate_end + buffer > existing_start

Independently of the type-specific slot policy, no booking may fall outside
08:00-17:00 building time, not even under override.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import ACTIVE_BOOKING_STATUSES, Booking
from engine.exceptions import BookingConflictError, BookingValidationError
from engine.validators.slot_policy import ValidationResult, to_building_time

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_MINUTES = 60
OUTER_START = time(8, 0)
OUTER_END = time(17, 0)


@dataclass(frozen=True)
class ConflictCandidate:
    """Interval being admitted or edited. booking_id excludes its own row."""

    start_at: datetime
    end_at: datetime
    elevator_required: bool
    booking_id: Optional[UUID] = None


def validate_outer_hours(start: datetime, end: datetime) -> ValidationResult:
    """
    Coarse guard: booking must lie within 08:00-17:00 building time.

    Applies to every booking path, including overrides.
    """
    local_start = to_building_time(start).time()
    local_end = to_building_time(end).time()

    if local_start < OUTER_START or local_end > OUTER_END:
        return ValidationResult(
            valid=False,
            error_code="OUTSIDE_HOURS",
            error_message="Booking must be within permitted move hours (8:00 AM – 5:00 PM)",
            details={"start": local_start.isoformat(), "end": local_end.isoformat()},
        )

    return ValidationResult(valid=True)


def _buffered_overlap(
    candidate: ConflictCandidate,
    existing_start: datetime,
    existing_end: datetime,
    buffer: timedelta,
) -> bool:
    return candidate.start_at - buffer < existing_end and candidate.end_at + buffer > existing_start


def has_conflict(
    candidate: ConflictCandidate,
    existing: Iterable[Any],
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
) -> bool:
    """
    Pure buffered-overlap test.

    Args:
        candidate: Interval under consideration
        existing: Bookings (or any objects with start_at, end_at,
            elevator_required, status and id attributes)
        buffer_minutes: Idle margin applied to both ends of the candidate

    Returns:
        True if an active elevator booking other than the candidate itself
        overlaps the buffered candidate interval
    """
    if not candidate.elevator_required:
        return False

    buffer = timedelta(minutes=buffer_minutes)
    for booking in existing:
        if not booking.elevator_required:
            continue
        if booking.status not in ACTIVE_BOOKING_STATUSES:
            continue
        if candidate.booking_id is not None and booking.id == candidate.booking_id:
            continue
        if _buffered_overlap(candidate, booking.start_at, booking.end_at, buffer):
            return True
    return False


async def find_conflicts(
    session: AsyncSession,
    candidate: ConflictCandidate,
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
) -> list[Booking]:
    """
    Load active elevator bookings overlapping the buffered candidate.

    Must run inside the same transaction as the write it guards; rows are
    locked with SELECT FOR UPDATE.
    """
    if not candidate.elevator_required:
        return []

    buffer = timedelta(minutes=buffer_minutes)
    stmt = (
        select(Booking)
        .where(Booking.elevator_required.is_(True))
        .where(Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        .where(Booking.start_at < candidate.end_at + buffer)
        .where(Booking.end_at > candidate.start_at - buffer)
        .order_by(Booking.start_at)
        .with_for_update()
    )
    if candidate.booking_id is not None:
        stmt = stmt.where(Booking.id != candidate.booking_id)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def assert_no_conflict(
    session: AsyncSession,
    candidate: ConflictCandidate,
    allow_override: bool = False,
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
) -> list[Booking]:
    """
    Enforce the outer-hours guard and the buffered elevator conflict rule.

    Args:
        session: Session inside the admission transaction
        candidate: Interval being written
        allow_override: Caller has already verified the actor may override
        buffer_minutes: Idle margin between elevator bookings

    Returns:
        Conflicting bookings that were overridden (empty when none)

    Raises:
        BookingValidationError: Outside 08:00-17:00
        BookingConflictError: Conflict found and override not allowed
    """
    outer = validate_outer_hours(candidate.start_at, candidate.end_at)
    if not outer.valid:
        raise BookingValidationError(
            outer.error_message,
            error_code=outer.error_code,
            details=outer.details,
        )

    conflicts = await find_conflicts(session, candidate, buffer_minutes)
    if not conflicts:
        return []

    conflict_ids = [str(booking.id) for booking in conflicts]

    if not allow_override:
        logger.warning(
            f"Elevator conflict: {candidate.start_at.isoformat()} - {candidate.end_at.isoformat()} "
            f"overlaps {len(conflicts)} booking(s)",
            extra={"booking_id": candidate.booking_id},
        )
        raise BookingConflictError(
            f"Elevator is already booked within {buffer_minutes} minutes of this time",
            details={"conflicting_booking_ids": conflict_ids},
        )

    logger.info(
        f"Elevator conflict overridden for {len(conflicts)} booking(s)",
        extra={"booking_id": candidate.booking_id},
    )
    return conflicts
