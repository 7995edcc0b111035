"""
Payment Reconciliation Service.

Turns paid invoices into approvals:
1. Ingest: parse the payload, classify the fee, extract the unit
2. Record: idempotent insert keyed by invoice id (re-delivery is a no-op)
3. Match: find a pending booking of the matching type for the unit and, in
   one transaction, create the ApprovalLink and approve the booking

Safety against double application rests on the booking status guard and the
unique invoice_id on approval_links, not on locks.

Operators can correct the ledger: set the fee type of an unknown record,
dismiss a record (excluded from all matching) or restore it, and run a full
re-match sweep.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import String, exists, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.connection import begin_serializable
from database.models import (
    ACTIVE_BOOKING_STATUSES,
    PRE_APPROVAL_STATUSES,
    ApprovalLink,
    Booking,
    BookingStatus,
    BookingType,
    FeeType,
    PaymentRecord,
    User,
)
from engine.exceptions import BookingValidationError, DuplicateMatchError, NotFoundError
from engine.permissions import OVERRIDE_ROLES, PRIVILEGED_ROLES, require_role
from engine.services.audit_service import AuditAction, log_audit
from engine.services.fee_classifier import FeeClassifier, classify_fee_type
from engine.services.notification_service import NotificationService
from engine.services.payment_parsing import PaymentEvent, parse_payment_event, unit_variants
from engine.system_actor import SystemActor
from engine.transactions.approval import transition_to_approved

logger = logging.getLogger(__name__)

FEE_TO_BOOKING_TYPE: dict[FeeType, BookingType] = {
    FeeType.MOVE_IN: BookingType.MOVE_IN,
    FeeType.MOVE_OUT: BookingType.MOVE_OUT,
}


@dataclass
class MatchOutcome:
    matched: bool
    booking_id: Optional[UUID] = None
    approved: bool = False
    reason: str = ""


@dataclass
class IngestResult:
    received: bool = True
    invoice_id: Optional[str] = None
    created: bool = False
    matched: bool = False
    booking_id: Optional[UUID] = None
    ignored_reason: Optional[str] = None


@dataclass
class SetFeeTypeResult:
    record: PaymentRecord
    approved: bool


@dataclass
class LedgerEntry:
    record: PaymentRecord
    booking_id: Optional[UUID] = None


@dataclass
class Ledger:
    matched: list[LedgerEntry] = field(default_factory=list)
    unmatched: list[LedgerEntry] = field(default_factory=list)
    dismissed: list[LedgerEntry] = field(default_factory=list)


def _month_bounds(billing_period: str) -> tuple[date, date]:
    year, month = (int(part) for part in billing_period.split("-"))
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


class ReconciliationService:
    """
    Matches payment records to bookings and drives payment-triggered approval.

    Usage:
        reconciliation = ReconciliationService(session_factory, notifications, system_actor)
        result = await reconciliation.ingest_event(payload)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationService,
        system_actor: SystemActor,
        classifier: FeeClassifier | None = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.system_actor = system_actor
        self.classifier = classifier

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_event(
        self,
        payload: dict[str, Any],
        match_billing_period: bool = True,
    ) -> IngestResult:
        """
        Record a paid invoice and try to approve its booking.

        Never raises: the sender always gets an acknowledgement so it does
        not retry. Failures are logged.

        Args:
            payload: Raw invoice payload (webhook or poll shape)
            match_billing_period: Restrict matching to bookings whose move date
                falls in the invoice's billing month (webhook path)
        """
        try:
            event = parse_payment_event(payload)
        except Exception as e:
            logger.error(f"Malformed payment event ignored: {type(e).__name__}: {e}", exc_info=True)
            return IngestResult(ignored_reason="malformed_payload")

        if event is None:
            logger.warning("Payment event without invoice or client id ignored")
            return IngestResult(ignored_reason="missing_identifiers")

        result = IngestResult(invoice_id=event.invoice_id)
        try:
            record, created = await self.record_payment(event)
            result.created = created

            outcome = await self.try_approve(record, billing_period_filter=match_billing_period)
            result.matched = outcome.matched
            result.booking_id = outcome.booking_id
        except Exception as e:
            logger.error(
                f"Payment ingestion failed: {type(e).__name__}: {e}",
                extra={"invoice_id": event.invoice_id},
                exc_info=True,
            )
            result.ignored_reason = "internal_error"

        return result

    async def record_payment(self, event: PaymentEvent) -> tuple[PaymentRecord, bool]:
        """
        Upsert a PaymentRecord keyed by invoice id.

        An existing record is returned untouched (no reclassification).

        Returns:
            (record, created)
        """
        async with self.session_factory() as session:
            existing = await session.scalar(
                select(PaymentRecord).where(PaymentRecord.invoice_id == event.invoice_id)
            )
        if existing is not None:
            logger.info("Payment already recorded", extra={"invoice_id": event.invoice_id})
            return existing, False

        fee_type = await classify_fee_type(event.description, self.classifier)
        unit = event.unit

        record = PaymentRecord(
            invoice_id=event.invoice_id,
            client_id=event.client_id,
            billing_period=event.billing_period,
            fee_type=fee_type,
            unit=unit,
            description=event.description or None,
            paid_at=event.paid_at,
        )

        async with self.session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                # Concurrent delivery of the same invoice won the insert
                await session.rollback()
                existing = await session.scalar(
                    select(PaymentRecord).where(PaymentRecord.invoice_id == event.invoice_id)
                )
                return existing, False

        logger.info(
            f"Payment recorded: fee_type={fee_type.value}, unit={unit}, period={event.billing_period}",
            extra={"invoice_id": event.invoice_id},
        )
        return record, True

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def _find_matching_booking(
        self,
        session: AsyncSession,
        record: PaymentRecord,
        statuses: tuple[BookingStatus, ...],
        billing_period_filter: bool,
    ) -> Optional[Booking]:
        variants = [v.upper() for v in unit_variants(record.unit)]
        stmt = (
            select(Booking)
            .where(Booking.booking_type == FEE_TO_BOOKING_TYPE[record.fee_type])
            .where(Booking.status.in_(statuses))
            .where(
                or_(
                    func.upper(Booking.unit, type_=String).in_(variants),
                    func.upper(Booking.unit, type_=String).endswith(f"-{record.unit.upper()}", autoescape=True),
                )
            )
            .order_by(Booking.start_at)
            .limit(1)
        )
        if billing_period_filter:
            month_start, month_end = _month_bounds(record.billing_period)
            stmt = stmt.where(Booking.move_date >= month_start).where(Booking.move_date < month_end)

        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_link(self, session: AsyncSession, record: PaymentRecord, booking: Booking) -> ApprovalLink:
        link = ApprovalLink(
            booking_id=booking.id,
            client_id=record.client_id,
            invoice_id=record.invoice_id,
            billing_period=record.billing_period,
        )
        session.add(link)
        try:
            await session.flush()
        except IntegrityError as e:
            raise DuplicateMatchError(
                f"Invoice {record.invoice_id} is already linked",
                details={"invoice_id": record.invoice_id},
            ) from e
        return link

    async def _match_record(
        self,
        record_id: UUID,
        statuses: tuple[BookingStatus, ...],
        billing_period_filter: bool,
    ) -> MatchOutcome:
        now = datetime.now(UTC)

        async with self.session_factory() as session:
            try:
                await begin_serializable(session)

                record = await session.get(PaymentRecord, record_id)
                if record is None:
                    raise NotFoundError(f"Payment record {record_id} not found")

                if record.dismissed:
                    return MatchOutcome(matched=False, reason="dismissed")
                if record.fee_type == FeeType.UNKNOWN or not record.unit:
                    return MatchOutcome(matched=False, reason="unclassified")

                already_linked = await session.scalar(
                    select(ApprovalLink.id).where(ApprovalLink.invoice_id == record.invoice_id)
                )
                if already_linked is not None:
                    return MatchOutcome(matched=False, reason="already_linked")

                booking = await self._find_matching_booking(session, record, statuses, billing_period_filter)
                if booking is None:
                    return MatchOutcome(matched=False, reason="no_booking")

                await self._create_link(session, record, booking)

                approved = False
                if booking.status in PRE_APPROVAL_STATUSES:
                    approved = await transition_to_approved(
                        session, booking.id, self.system_actor.id, now=now
                    )
                    if not approved:
                        await session.rollback()
                        return MatchOutcome(matched=False, booking_id=booking.id, reason="status_changed")

                    await log_audit(
                        session,
                        self.system_actor.id,
                        AuditAction.BOOKING_PAYMENT_APPROVED,
                        booking.id,
                        {
                            "invoice_id": record.invoice_id,
                            "client_id": record.client_id,
                            "fee_type": record.fee_type.value,
                            "billing_period": record.billing_period,
                        },
                    )

                await session.commit()
                await session.refresh(booking)
            except DuplicateMatchError:
                await session.rollback()
                logger.info("Invoice already linked by a concurrent match", extra={"invoice_id": record.invoice_id})
                return MatchOutcome(matched=False, reason="duplicate")
            except SQLAlchemyError as e:
                logger.error(f"Database error while matching payment: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(
            f"Payment matched to booking (approved={approved})",
            extra={"invoice_id": record.invoice_id, "booking_id": booking.id},
        )

        if approved:
            await self.notifications.booking_approved(booking, reason="move fee payment received")

        return MatchOutcome(matched=True, booking_id=booking.id, approved=approved)

    async def try_approve(self, record: PaymentRecord, billing_period_filter: bool = False) -> MatchOutcome:
        """
        Match a payment record to a SUBMITTED/PENDING booking and approve it.

        Requires a classified fee type and an extracted unit; dismissed or
        already-linked records never match.

        Args:
            record: Payment record to match
            billing_period_filter: Only consider bookings moving in the
                record's billing month

        Returns:
            MatchOutcome
        """
        return await self._match_record(record.id, PRE_APPROVAL_STATUSES, billing_period_filter)

    async def retry_match(self) -> int:
        """
        Re-match every unlinked, non-dismissed, classified record.

        Also links records to bookings that are already APPROVED so their
        provenance is recorded.

        Returns:
            int: Number of records matched
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentRecord.id)
                .where(PaymentRecord.dismissed.is_(False))
                .where(PaymentRecord.fee_type != FeeType.UNKNOWN)
                .where(PaymentRecord.unit.is_not(None))
                .where(~exists().where(ApprovalLink.invoice_id == PaymentRecord.invoice_id))
                .order_by(PaymentRecord.paid_at)
            )
            record_ids = list(result.scalars().all())

        matched_count = 0
        for record_id in record_ids:
            try:
                outcome = await self._match_record(record_id, ACTIVE_BOOKING_STATUSES, billing_period_filter=False)
                if outcome.matched:
                    matched_count += 1
            except Exception as e:
                logger.error(f"Error re-matching payment record {record_id}: {e}", exc_info=True)

        logger.info(f"Re-match sweep: {matched_count}/{len(record_ids)} record(s) matched")
        return matched_count

    # ------------------------------------------------------------------
    # Manual correction
    # ------------------------------------------------------------------

    async def _load_record(self, session: AsyncSession, record_id: UUID) -> PaymentRecord:
        record = await session.get(PaymentRecord, record_id)
        if record is None:
            raise NotFoundError(f"Payment record {record_id} not found")
        return record

    async def set_fee_type(self, record_id: UUID, fee_type: FeeType, actor: User) -> SetFeeTypeResult:
        """
        Classify a record by hand, then try to match it.

        Raises:
            AuthorizationError: Actor may not edit the ledger
            BookingValidationError: fee_type is not move_in / move_out
            NotFoundError: No such record
        """
        require_role(actor, OVERRIDE_ROLES, "edit the payment ledger")
        if fee_type not in FEE_TO_BOOKING_TYPE:
            raise BookingValidationError(
                "Fee type must be move_in or move_out",
                error_code="INVALID_FEE_TYPE",
            )

        async with self.session_factory() as session:
            record = await self._load_record(session, record_id)
            previous = record.fee_type
            record.fee_type = fee_type
            await log_audit(
                session,
                actor.id,
                AuditAction.PAYMENT_FEE_TYPE_SET,
                None,
                {"invoice_id": record.invoice_id, "old": previous.value, "new": fee_type.value},
            )
            await session.commit()

        outcome = await self.try_approve(record)
        return SetFeeTypeResult(record=record, approved=outcome.approved)

    async def dismiss_record(self, record_id: UUID, reason: str, actor: User) -> PaymentRecord:
        """
        Exclude a record from all future matching.

        Raises:
            BookingValidationError: Empty reason
        """
        require_role(actor, OVERRIDE_ROLES, "edit the payment ledger")
        reason = (reason or "").strip()
        if not reason:
            raise BookingValidationError("A reason is required to dismiss a payment", error_code="REASON_REQUIRED")

        async with self.session_factory() as session:
            record = await self._load_record(session, record_id)
            record.dismissed = True
            record.dismissed_reason = reason
            record.dismissed_at = datetime.now(UTC)
            await log_audit(
                session,
                actor.id,
                AuditAction.PAYMENT_DISMISSED,
                None,
                {"invoice_id": record.invoice_id, "reason": reason},
            )
            await session.commit()

        logger.info("Payment record dismissed", extra={"invoice_id": record.invoice_id, "actor_id": actor.id})
        return record

    async def restore_record(self, record_id: UUID, actor: User) -> PaymentRecord:
        """Clear a dismissal so the record is matchable again."""
        require_role(actor, OVERRIDE_ROLES, "edit the payment ledger")

        async with self.session_factory() as session:
            record = await self._load_record(session, record_id)
            record.dismissed = False
            record.dismissed_reason = None
            record.dismissed_at = None
            await log_audit(
                session,
                actor.id,
                AuditAction.PAYMENT_RESTORED,
                None,
                {"invoice_id": record.invoice_id},
            )
            await session.commit()

        logger.info("Payment record restored", extra={"invoice_id": record.invoice_id, "actor_id": actor.id})
        return record

    async def get_ledger(self, actor: User, billing_period: str | None = None) -> Ledger:
        """Payment records split into matched, unmatched and dismissed."""
        require_role(actor, PRIVILEGED_ROLES, "view the payment ledger")

        async with self.session_factory() as session:
            stmt = select(PaymentRecord, ApprovalLink.id, ApprovalLink.booking_id).outerjoin(
                ApprovalLink, ApprovalLink.invoice_id == PaymentRecord.invoice_id
            ).order_by(PaymentRecord.paid_at.desc())
            if billing_period:
                stmt = stmt.where(PaymentRecord.billing_period == billing_period)
            rows = (await session.execute(stmt)).all()

        ledger = Ledger()
        for record, link_id, booking_id in rows:
            entry = LedgerEntry(record=record, booking_id=booking_id)
            if record.dismissed:
                ledger.dismissed.append(entry)
            elif link_id is not None:
                ledger.matched.append(entry)
            else:
                ledger.unmatched.append(entry)
        return ledger
