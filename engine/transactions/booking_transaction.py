"""
Booking Transaction Handler - admission and manual approval.

This module implements the write paths that must observe a consistent view
of active elevator bookings:
- submit: public request, strict slot policy, no override, SUBMITTED
- intake: same as submit for email intake, PENDING
- quick_approve: concierge quick entry, created already APPROVED
- decide: approve / reject / edit times of an existing booking

Each runs the conflict read and the write inside one SERIALIZABLE
transaction holding the elevator advisory lock (PostgreSQL). Notifications
are sent after commit and never roll a committed change back.
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.connection import ELEVATOR_RESOURCE, begin_serializable
from database.models import PRE_APPROVAL_STATUSES, Booking, BookingStatus, User
from engine.exceptions import BookingValidationError, NotFoundError
from engine.permissions import PRIVILEGED_ROLES, can_override, require_role
from engine.schemas import BookingRequest
from engine.services.audit_service import AuditAction, log_audit
from engine.services.notification_service import NotificationService
from engine.system_actor import SystemActor
from engine.transactions.approval import transition_to_approved, transition_to_rejected
from engine.validators.conflict_validator import (
    DEFAULT_BUFFER_MINUTES,
    ConflictCandidate,
    assert_no_conflict,
)
from engine.validators.slot_policy import (
    ValidationResult,
    to_building_time,
    validate_booking_time,
    validate_interval,
)

logger = logging.getLogger(__name__)

DECISION_STATUSES = (BookingStatus.APPROVED, BookingStatus.REJECTED)


def _raise_if_invalid(result: ValidationResult) -> None:
    if not result.valid:
        raise BookingValidationError(
            result.error_message,
            error_code=result.error_code,
            details=result.details,
        )


class BookingTransaction:
    """
    Atomic transaction handler for booking admission and decisions.

    Usage:
        bookings = BookingTransaction(session_factory, notifications, system_actor)
        booking = await bookings.submit(request)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationService,
        system_actor: SystemActor,
        buffer_minutes: int = DEFAULT_BUFFER_MINUTES,
        holidays: frozenset | None = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.system_actor = system_actor
        self.buffer_minutes = buffer_minutes
        self.holidays = holidays

    def _new_booking(self, request: BookingRequest, status: BookingStatus, created_by_id: UUID) -> Booking:
        return Booking(
            resident_name=request.resident_name,
            resident_email=str(request.resident_email),
            resident_phone=request.resident_phone,
            unit=request.unit,
            public_unit_mask=request.public_unit_mask,
            company_name=request.company_name,
            booking_type=request.booking_type,
            move_date=to_building_time(request.start_at).date(),
            start_at=to_building_time(request.start_at),
            end_at=to_building_time(request.end_at),
            elevator_required=request.elevator_required,
            loading_bay_required=request.loading_bay_required,
            notes=request.notes,
            status=status,
            created_by_id=created_by_id,
        )

    async def submit(self, request: BookingRequest) -> Booking:
        """
        Admit a public booking request as SUBMITTED.

        Raises:
            BookingValidationError: Interval violates the slot policy
            BookingConflictError: Elevator already booked within the buffer
        """
        return await self._admit(request, BookingStatus.SUBMITTED, source="public")

    async def intake(self, request: BookingRequest) -> Booking:
        """Admit a request received through email intake as PENDING."""
        return await self._admit(request, BookingStatus.PENDING, source="email_intake")

    async def _admit(self, request: BookingRequest, status: BookingStatus, source: str) -> Booking:
        trace_id = f"{request.unit}_{request.start_at.isoformat()}"
        logger.info(
            f"[{trace_id}] Starting admission ({source}, {request.booking_type.value})",
        )

        _raise_if_invalid(
            validate_booking_time(request.start_at, request.end_at, request.booking_type, self.holidays)
        )

        candidate = ConflictCandidate(
            start_at=to_building_time(request.start_at),
            end_at=to_building_time(request.end_at),
            elevator_required=request.elevator_required,
        )

        async with self.session_factory() as session:
            try:
                await begin_serializable(session, ELEVATOR_RESOURCE)
                await assert_no_conflict(session, candidate, allow_override=False, buffer_minutes=self.buffer_minutes)

                booking = self._new_booking(request, status, self.system_actor.id)
                session.add(booking)
                await session.flush()

                await log_audit(
                    session,
                    self.system_actor.id,
                    AuditAction.BOOKING_SUBMITTED,
                    booking.id,
                    {"source": source},
                )

                await session.commit()
                await session.refresh(booking)
            except SQLAlchemyError as e:
                logger.error(f"[{trace_id}] Database error during admission: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(
            f"[{trace_id}] Booking admitted as {status.value}",
            extra={"booking_id": booking.id},
        )

        await self.notifications.booking_submitted(booking)
        return booking

    async def quick_approve(
        self,
        request: BookingRequest,
        actor: User,
        override_conflict: bool = False,
    ) -> Booking:
        """
        Create a booking directly in APPROVED state (concierge quick entry).

        Concierges are held to the slot policy; council and property managers
        bypass it and may also bypass the conflict detector with
        override_conflict. The 08:00-17:00 guard always applies.

        Raises:
            AuthorizationError: Actor is not privileged
            BookingValidationError: Interval invalid for this actor
            BookingConflictError: Conflict and no permitted override
        """
        require_role(actor, PRIVILEGED_ROLES, "quick-approve bookings")

        _raise_if_invalid(validate_interval(request.start_at, request.end_at))

        policy = validate_booking_time(request.start_at, request.end_at, request.booking_type, self.holidays)
        if not can_override(actor):
            _raise_if_invalid(policy)

        allow_override = can_override(actor) and override_conflict
        candidate = ConflictCandidate(
            start_at=to_building_time(request.start_at),
            end_at=to_building_time(request.end_at),
            elevator_required=request.elevator_required,
        )
        now = datetime.now(UTC)

        async with self.session_factory() as session:
            try:
                await begin_serializable(session, ELEVATOR_RESOURCE)
                overridden = await assert_no_conflict(
                    session, candidate, allow_override=allow_override, buffer_minutes=self.buffer_minutes
                )

                booking = self._new_booking(request, BookingStatus.APPROVED, actor.id)
                booking.approved_by_id = actor.id
                booking.approved_at = now
                session.add(booking)
                await session.flush()

                metadata = {"source": "concierge_quick_entry"}
                if not policy.valid:
                    metadata["slot_policy_bypassed"] = policy.error_code
                await log_audit(session, actor.id, AuditAction.BOOKING_QUICK_APPROVED, booking.id, metadata)

                if overridden:
                    await log_audit(
                        session,
                        actor.id,
                        AuditAction.CONFLICT_OVERRIDE,
                        booking.id,
                        {
                            "before": None,
                            "after": booking.snapshot(),
                            "conflicting_booking_ids": [str(b.id) for b in overridden],
                        },
                    )

                await session.commit()
                await session.refresh(booking)
            except SQLAlchemyError as e:
                logger.error(f"Database error during quick approval: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(
            f"Booking quick-approved by {actor.email}",
            extra={"booking_id": booking.id, "actor_id": actor.id},
        )

        await self.notifications.booking_approved(booking)
        return booking

    async def decide(
        self,
        booking_id: UUID,
        actor: User,
        status: BookingStatus | None = None,
        override_requested: bool = False,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> Booking:
        """
        Approve, reject and/or reschedule an existing booking.

        Args:
            booking_id: Booking to change
            actor: Privileged user making the decision
            status: APPROVED or REJECTED (None for a time edit only)
            override_requested: Bypass the conflict detector (council / PM only)
            start_at: New start, if rescheduling
            end_at: New end, if rescheduling

        Returns:
            The updated booking

        Raises:
            AuthorizationError: Actor is not privileged
            NotFoundError: No such booking
            BookingValidationError: Illegal transition or invalid new interval
            BookingConflictError: New interval conflicts and no permitted override
        """
        require_role(actor, PRIVILEGED_ROLES, "decide bookings")

        if status is not None and status not in DECISION_STATUSES:
            raise BookingValidationError(
                f"Cannot set status to {status.value}",
                error_code="INVALID_TRANSITION",
            )

        allow_override = can_override(actor) and override_requested
        now = datetime.now(UTC)

        async with self.session_factory() as session:
            try:
                await begin_serializable(session, ELEVATOR_RESOURCE)

                result = await session.execute(
                    select(Booking).where(Booking.id == booking_id).with_for_update()
                )
                booking = result.scalar_one_or_none()
                if booking is None:
                    raise NotFoundError(f"Booking {booking_id} not found")

                transition = status is not None and status != booking.status
                if transition and booking.status not in PRE_APPROVAL_STATUSES:
                    raise BookingValidationError(
                        f"Booking is already {booking.status.value}",
                        error_code="INVALID_TRANSITION",
                    )

                new_start = to_building_time(start_at) if start_at else booking.start_at
                new_end = to_building_time(end_at) if end_at else booking.end_at
                times_edited = new_start != booking.start_at or new_end != booking.end_at

                if times_edited:
                    _raise_if_invalid(validate_interval(new_start, new_end))
                    if not can_override(actor):
                        _raise_if_invalid(
                            validate_booking_time(new_start, new_end, booking.booking_type, self.holidays)
                        )

                before = booking.snapshot()
                overridden = []
                # A rejected booking holds no capacity, so there is nothing to conflict with
                if status != BookingStatus.REJECTED:
                    overridden = await assert_no_conflict(
                        session,
                        ConflictCandidate(
                            start_at=new_start,
                            end_at=new_end,
                            elevator_required=booking.elevator_required,
                            booking_id=booking.id,
                        ),
                        allow_override=allow_override,
                        buffer_minutes=self.buffer_minutes,
                    )

                if times_edited:
                    booking.start_at = new_start
                    booking.end_at = new_end
                    booking.move_date = to_building_time(new_start).date()
                    await session.flush()

                if transition and status == BookingStatus.APPROVED:
                    if not await transition_to_approved(session, booking.id, actor.id, now=now):
                        raise BookingValidationError(
                            "Booking is no longer awaiting approval",
                            error_code="INVALID_TRANSITION",
                        )
                elif transition and status == BookingStatus.REJECTED:
                    if not await transition_to_rejected(session, booking.id, now=now):
                        raise BookingValidationError(
                            "Booking is no longer awaiting approval",
                            error_code="INVALID_TRANSITION",
                        )

                await session.refresh(booking)
                after = booking.snapshot()

                if times_edited:
                    await log_audit(
                        session, actor.id, AuditAction.BOOKING_TIME_EDITED, booking.id,
                        {"before": before, "after": after},
                    )
                if overridden:
                    await log_audit(
                        session,
                        actor.id,
                        AuditAction.CONFLICT_OVERRIDE,
                        booking.id,
                        {
                            "before": before,
                            "after": after,
                            "conflicting_booking_ids": [str(b.id) for b in overridden],
                        },
                    )
                if transition:
                    action = (
                        AuditAction.BOOKING_APPROVED
                        if status == BookingStatus.APPROVED
                        else AuditAction.BOOKING_REJECTED
                    )
                    await log_audit(session, actor.id, action, booking.id, {"previous_status": before["status"]})

                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error during decision: {e}", exc_info=True, extra={"booking_id": booking_id})
                await session.rollback()
                raise

        logger.info(
            f"Booking decided by {actor.email}: status={booking.status.value}, "
            f"times_edited={times_edited}, overridden={len(overridden)}",
            extra={"booking_id": booking.id, "actor_id": actor.id},
        )

        if transition and status == BookingStatus.APPROVED:
            await self.notifications.booking_approved(booking)
        elif transition and status == BookingStatus.REJECTED:
            await self.notifications.booking_rejected(booking)

        return booking

    async def get_booking(self, booking_id: UUID) -> Booking:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def list_public_bookings(self) -> list[Booking]:
        """APPROVED bookings ordered by start, for the public calendar."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking)
                .where(Booking.status == BookingStatus.APPROVED)
                .order_by(Booking.start_at)
            )
            return list(result.scalars().all())
