"""
Auto-Approval Worker - Approves SUBMITTED bookings nobody acted on.

Runs every 5 minutes (15s after startup). Every SUBMITTED booking created
more than AUTO_APPROVE_AFTER_HOURS ago is approved on behalf of the system
actor.

Flow (per booking, independently):
1. Guarded UPDATE SUBMITTED -> APPROVED (skipped if a human got there first)
2. Audit BOOKING_AUTO_APPROVED with reason 24h_no_action
3. Commit, then send approval notifications

One failing booking never stops the sweep. No lock is taken: a booking a
human already decided simply fails the status guard.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Booking, BookingStatus
from engine.services.audit_service import AuditAction, log_audit
from engine.services.notification_service import NotificationService
from engine.system_actor import SystemActor
from engine.transactions.approval import transition_to_approved
from engine.workers.periodic import PeriodicWorker

logger = logging.getLogger(__name__)

AUTO_APPROVE_REASON = "24h_no_action"


class AutoApprovalWorker(PeriodicWorker):
    name = "auto_approval_worker"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationService,
        system_actor: SystemActor,
        threshold_hours: int = 24,
        interval_seconds: int = 300,
        startup_delay_seconds: int = 15,
    ):
        super().__init__(interval_seconds, startup_delay_seconds)
        self.session_factory = session_factory
        self.notifications = notifications
        self.system_actor = system_actor
        self.threshold = timedelta(hours=threshold_hours)

    async def find_stale_bookings(self, now: datetime) -> list[UUID]:
        cutoff = now - self.threshold
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking.id)
                .where(Booking.status == BookingStatus.SUBMITTED)
                .where(Booking.created_at < cutoff)
                .order_by(Booking.created_at)
            )
            return list(result.scalars().all())

    async def approve_one(self, booking_id: UUID, now: datetime) -> bool:
        """
        Approve a single stale booking.

        Returns:
            True if approved, False if it had already left SUBMITTED
        """
        async with self.session_factory() as session:
            approved = await transition_to_approved(
                session,
                booking_id,
                self.system_actor.id,
                from_statuses=(BookingStatus.SUBMITTED,),
                now=now,
            )
            if not approved:
                await session.rollback()
                return False

            await log_audit(
                session,
                self.system_actor.id,
                AuditAction.BOOKING_AUTO_APPROVED,
                booking_id,
                {"reason": AUTO_APPROVE_REASON},
            )
            await session.commit()
            booking = await session.get(Booking, booking_id)

        logger.info("Booking auto-approved", extra={"booking_id": booking_id, "worker": self.name})

        if booking is not None:
            await self.notifications.booking_approved(
                booking, reason=f"automatically after {int(self.threshold.total_seconds() // 3600)}h without action"
            )
        return True

    async def run_once(self, now: datetime | None = None) -> int:
        """
        Run one sweep.

        Returns:
            int: Number of bookings approved in this run
        """
        now = now or datetime.now(UTC)
        booking_ids = await self.find_stale_bookings(now)
        if not booking_ids:
            return 0

        logger.info(f"Found {len(booking_ids)} stale SUBMITTED booking(s)", extra={"worker": self.name})

        approved_count = 0
        for booking_id in booking_ids:
            try:
                if await self.approve_one(booking_id, now):
                    approved_count += 1
            except Exception as e:
                logger.error(
                    f"Error auto-approving booking {booking_id}: {e}",
                    extra={"booking_id": booking_id, "worker": self.name},
                    exc_info=True,
                )

        logger.info(f"Auto-approval run completed | approved_count={approved_count}", extra={"worker": self.name})
        return approved_count


if __name__ == "__main__":
    from engine.container import build_engine
    from shared.logging_config import configure_logging

    async def _main() -> None:
        engine = await build_engine()
        await engine.auto_approval.run_forever()

    configure_logging()
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Auto-approval worker stopped by user")
