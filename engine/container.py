"""
Engine assembly.

Builds every component once, with its collaborators passed in explicitly:
the session factory, the notification service and the system actor resolved
at startup. The API and the standalone worker runners both start from
build_engine().
"""

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engine.services.admin_service import AdminService
from engine.services.fee_classifier import build_fee_classifier
from engine.services.notification_service import MailSender, NotificationService
from engine.services.reconciliation_service import ReconciliationService
from engine.system_actor import SystemActor, resolve_system_actor
from engine.transactions.booking_transaction import BookingTransaction
from engine.validators.holidays import get_holiday_calendar
from engine.workers.auto_approval_worker import AutoApprovalWorker
from engine.workers.payment_reminder_worker import PaymentReminderWorker
from engine.workers.periodic import PeriodicWorker
from engine.workers.reconciliation_poller import InvoiceSource, ReconciliationPoller
from shared.config import Settings, get_settings
from shared.email_client import Mailer
from shared.invoice_ninja_client import InvoiceNinjaClient

logger = logging.getLogger(__name__)


@dataclass
class BookingEngine:
    """All engine components, wired."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    system_actor: SystemActor
    notifications: NotificationService
    bookings: BookingTransaction
    reconciliation: ReconciliationService
    admin: AdminService
    auto_approval: AutoApprovalWorker
    poller: ReconciliationPoller
    reminders: PaymentReminderWorker
    _tasks: list[asyncio.Task] = field(default_factory=list)

    @property
    def workers(self) -> list[PeriodicWorker]:
        return [self.auto_approval, self.poller, self.reminders]

    def start_workers(self) -> None:
        """Schedule every worker loop on the running event loop."""
        for worker in self.workers:
            self._tasks.append(asyncio.create_task(worker.run_forever(), name=worker.name))
        logger.info(f"Started {len(self._tasks)} background worker(s)")

    async def stop_workers(self) -> None:
        """Cancel worker loops and wait for them to exit."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Background workers stopped")


async def build_engine(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    mailer: MailSender | None = None,
    invoice_source: InvoiceSource | None = None,
) -> BookingEngine:
    """
    Assemble the engine.

    Raises:
        StartupValidationError: System actor missing or not a CONCIERGE
    """
    settings = settings or get_settings()
    if session_factory is None:
        from database.connection import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    system_actor = await resolve_system_actor(session_factory, settings.SYSTEM_ACTOR_EMAIL)

    notifications = NotificationService(
        session_factory,
        mailer or Mailer(settings),
        include_contact_in_approvals=settings.INCLUDE_CONTACT_IN_APPROVAL_EMAILS,
        building_name=settings.BUILDING_NAME,
    )

    reconciliation = ReconciliationService(
        session_factory,
        notifications,
        system_actor,
        classifier=build_fee_classifier(settings),
    )

    if invoice_source is None and settings.invoice_ninja_configured:
        invoice_source = InvoiceNinjaClient(settings)

    return BookingEngine(
        settings=settings,
        session_factory=session_factory,
        system_actor=system_actor,
        notifications=notifications,
        bookings=BookingTransaction(
            session_factory,
            notifications,
            system_actor,
            buffer_minutes=settings.CONFLICT_BUFFER_MINUTES,
            holidays=get_holiday_calendar(),
        ),
        reconciliation=reconciliation,
        admin=AdminService(session_factory, system_actor),
        auto_approval=AutoApprovalWorker(
            session_factory,
            notifications,
            system_actor,
            threshold_hours=settings.AUTO_APPROVE_AFTER_HOURS,
            interval_seconds=settings.AUTO_APPROVAL_INTERVAL_SECONDS,
            startup_delay_seconds=settings.WORKER_STARTUP_DELAY_SECONDS,
        ),
        poller=ReconciliationPoller(
            reconciliation,
            invoice_source,
            enabled=settings.RECONCILIATION_ENABLED,
            lookback_hours=settings.RECONCILIATION_LOOKBACK_HOURS,
            interval_seconds=settings.RECONCILIATION_POLL_INTERVAL_SECONDS,
            startup_delay_seconds=settings.WORKER_STARTUP_DELAY_SECONDS,
        ),
        reminders=PaymentReminderWorker(
            session_factory,
            notifications,
            system_actor,
            enabled=settings.PAYMENT_REMINDER_ENABLED,
            interval_seconds=settings.PAYMENT_REMINDER_INTERVAL_SECONDS,
            startup_delay_seconds=settings.WORKER_STARTUP_DELAY_SECONDS,
        ),
    )
