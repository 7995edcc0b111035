"""
Payment Reminder Worker - Nudges requesters whose move fee is unpaid.

Runs every 5 minutes (15s after startup) when PAYMENT_REMINDER_ENABLED is set.
A booking is due a reminder when it:
- is SUBMITTED or PENDING
- is a MOVE_IN or MOVE_OUT (the only types that carry a fee)
- moves today or later (building-local date)
- has no ApprovalLink (no payment matched yet)
- was never reminded, or was last reminded more than 24h ago

The timestamp is only stamped after the email went out, so a failed send is
retried on the next cycle.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import PRE_APPROVAL_STATUSES, ApprovalLink, Booking, BookingType
from engine.services.audit_service import AuditAction, log_audit
from engine.services.notification_service import NotificationService
from engine.system_actor import SystemActor
from engine.validators.slot_policy import to_building_time
from engine.workers.periodic import PeriodicWorker

logger = logging.getLogger(__name__)

REMINDER_INTERVAL = timedelta(hours=24)
FEE_BOOKING_TYPES = (BookingType.MOVE_IN, BookingType.MOVE_OUT)


class PaymentReminderWorker(PeriodicWorker):
    name = "payment_reminder_worker"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationService,
        system_actor: SystemActor,
        enabled: bool = False,
        interval_seconds: int = 300,
        startup_delay_seconds: int = 15,
    ):
        super().__init__(interval_seconds, startup_delay_seconds)
        self.session_factory = session_factory
        self.notifications = notifications
        self.system_actor = system_actor
        self.enabled = enabled

    async def find_due_bookings(self, now: datetime) -> list[UUID]:
        today = to_building_time(now).date()
        cutoff = now - REMINDER_INTERVAL
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking.id)
                .where(Booking.status.in_(PRE_APPROVAL_STATUSES))
                .where(Booking.booking_type.in_(FEE_BOOKING_TYPES))
                .where(Booking.move_date >= today)
                .where(~exists().where(ApprovalLink.booking_id == Booking.id))
                .where(
                    or_(
                        Booking.last_payment_reminder_at.is_(None),
                        Booking.last_payment_reminder_at <= cutoff,
                    )
                )
                .order_by(Booking.move_date)
            )
            return list(result.scalars().all())

    async def remind_one(self, booking_id: UUID, now: datetime) -> None:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                return

            # Raises on delivery failure; nothing is stamped
            await self.notifications.send_payment_reminder(booking, now)

            booking.last_payment_reminder_at = now
            await log_audit(session, self.system_actor.id, AuditAction.PAYMENT_REMINDER_SENT, booking.id)
            await session.commit()

        logger.info("Payment reminder sent", extra={"booking_id": booking_id, "worker": self.name})

    async def run_once(self, now: datetime | None = None) -> int:
        """
        Send every due reminder.

        Returns:
            int: Number of reminders sent
        """
        if not self.enabled:
            return 0

        now = now or datetime.now(UTC)
        booking_ids = await self.find_due_bookings(now)

        sent_count = 0
        for booking_id in booking_ids:
            try:
                await self.remind_one(booking_id, now)
                sent_count += 1
            except Exception as e:
                logger.error(
                    f"Error sending payment reminder for booking {booking_id}: {e}",
                    extra={"booking_id": booking_id, "worker": self.name},
                    exc_info=True,
                )

        if booking_ids:
            logger.info(
                f"Payment reminder run completed | sent={sent_count}/{len(booking_ids)}",
                extra={"worker": self.name},
            )
        return sent_count


if __name__ == "__main__":
    from engine.container import build_engine
    from shared.logging_config import configure_logging

    async def _main() -> None:
        engine = await build_engine()
        await engine.reminders.run_forever()

    configure_logging()
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Payment reminder worker stopped by user")
