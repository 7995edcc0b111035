"""
Integration tests for payment reconciliation.

Tests coverage:
- Ingest records a payment once per invoice id and approves the earliest
  pending booking of the matching type for the unit
- Building-prefixed unit codes match bare unit numbers in both directions
- Webhook matching is restricted to the billing month; polling is not
- Dismissed records never match; restore makes them matchable again
- Manual fee-type classification, re-match sweep and ledger view
"""

from datetime import datetime
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select

from database.models import ApprovalLink, Booking, BookingStatus, BookingType, FeeType, PaymentRecord
from engine.exceptions import AuthorizationError, BookingValidationError, NotFoundError

BUILDING_TZ = ZoneInfo("America/Vancouver")


def invoice_payload(
    invoice_id: str = "inv_1",
    product_key: str = "Move-In Fee",
    notes: str = "Unit 1105",
    item_date: str = "2027-03-01",
) -> dict:
    return {
        "data": {
            "id": invoice_id,
            "client_id": "client_1",
            "paid_date": "2027-03-02",
            "line_items": [{"product_key": product_key, "notes": notes, "date": item_date}],
        }
    }


def at(hour: int, day: int = 10, month: int = 3) -> datetime:
    return datetime(2027, month, day, hour, 0, tzinfo=BUILDING_TZ)


async def load_record(session_factory, invoice_id: str) -> PaymentRecord:
    async with session_factory() as session:
        return await session.scalar(select(PaymentRecord).where(PaymentRecord.invoice_id == invoice_id))


async def load_booking(session_factory, booking_id) -> Booking:
    async with session_factory() as session:
        return await session.get(Booking, booking_id)


async def count_links(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(ApprovalLink))


# ============================================================================
# Ingestion and matching
# ============================================================================


class TestIngest:
    @pytest.mark.asyncio
    async def test_payment_approves_pending_booking(
        self, reconciliation, insert_booking, session_factory, system_actor, audit_entries, mailer
    ):
        booking = await insert_booking()

        result = await reconciliation.ingest_event(invoice_payload())

        assert result.created is True
        assert result.matched is True
        assert result.booking_id == booking.id

        approved = await load_booking(session_factory, booking.id)
        assert approved.status == BookingStatus.APPROVED
        assert approved.approved_by_id == system_actor.id

        entries = await audit_entries(booking.id)
        assert [e.action for e in entries] == ["BOOKING_PAYMENT_APPROVED"]
        assert entries[0].metadata_["invoice_id"] == "inv_1"
        assert entries[0].metadata_["fee_type"] == "move_in"
        assert "move fee payment received" in mailer.send.await_args.args[2]

        record = await load_record(session_factory, "inv_1")
        assert record.fee_type == FeeType.MOVE_IN
        assert record.unit == "1105"
        assert record.billing_period == "2027-03"

    @pytest.mark.asyncio
    async def test_redelivery_is_noop(self, reconciliation, insert_booking, session_factory):
        await insert_booking()
        await reconciliation.ingest_event(invoice_payload())

        again = await reconciliation.ingest_event(invoice_payload())

        assert again.created is False
        assert again.matched is False
        assert await count_links(session_factory) == 1
        async with session_factory() as session:
            assert await session.scalar(select(func.count()).select_from(PaymentRecord)) == 1

    @pytest.mark.asyncio
    async def test_redelivery_does_not_reclassify(self, reconciliation, session_factory):
        await reconciliation.ingest_event(invoice_payload(product_key="Strata levy"))
        await reconciliation.ingest_event(invoice_payload(product_key="Move-In Fee"))

        record = await load_record(session_factory, "inv_1")
        assert record.fee_type == FeeType.UNKNOWN

    @pytest.mark.asyncio
    async def test_payload_without_ids_ignored(self, reconciliation):
        result = await reconciliation.ingest_event({"data": {"amount": 250}})

        assert result.ignored_reason == "missing_identifiers"
        assert result.matched is False

    @pytest.mark.asyncio
    async def test_malformed_line_items_still_acknowledged(self, reconciliation, session_factory):
        result = await reconciliation.ingest_event(
            {"data": {"id": "inv_x", "client_id": "c1", "line_items": {"product_key": "Move-in"}}}
        )

        assert result.received is True
        assert result.matched is False
        record = await load_record(session_factory, "inv_x")
        assert record.fee_type == FeeType.UNKNOWN

    @pytest.mark.asyncio
    async def test_out_of_range_paid_date_still_acknowledged(self, reconciliation, session_factory):
        result = await reconciliation.ingest_event({"id": "inv_y", "client_id": "c1", "paid_date": 10**20})

        assert result.received is True
        assert result.ignored_reason is None
        assert await load_record(session_factory, "inv_y") is not None

    @pytest.mark.asyncio
    async def test_non_object_payload_acknowledged(self, reconciliation):
        result = await reconciliation.ingest_event(["not", "an", "invoice"])

        assert result.received is True
        assert result.ignored_reason == "malformed_payload"

    @pytest.mark.asyncio
    async def test_prefixed_booking_unit_matches_bare_invoice_unit(
        self, reconciliation, insert_booking, session_factory
    ):
        booking = await insert_booking(unit="T4-1105")

        result = await reconciliation.ingest_event(invoice_payload(notes="Unit 1105"))

        assert result.booking_id == booking.id

    @pytest.mark.asyncio
    async def test_prefixed_invoice_unit_matches_bare_booking_unit(self, reconciliation, insert_booking):
        booking = await insert_booking(unit="1105")

        result = await reconciliation.ingest_event(invoice_payload(notes="Tower T4-1105"))

        assert result.booking_id == booking.id

    @pytest.mark.asyncio
    async def test_fee_type_must_match_booking_type(self, reconciliation, insert_booking):
        await insert_booking(booking_type=BookingType.MOVE_IN)

        result = await reconciliation.ingest_event(invoice_payload(product_key="Move-Out Fee"))

        assert result.matched is False

    @pytest.mark.asyncio
    async def test_earliest_pending_booking_wins(self, reconciliation, insert_booking):
        later = await insert_booking(start_at=at(13, day=20), end_at=at(16, day=20))
        earlier = await insert_booking(status=BookingStatus.PENDING)

        result = await reconciliation.ingest_event(invoice_payload())

        assert result.booking_id == earlier.id
        assert result.booking_id != later.id

    @pytest.mark.asyncio
    async def test_payment_approves_only_one_booking(self, reconciliation, insert_booking, session_factory):
        first = await insert_booking()
        second = await insert_booking(start_at=at(13, day=20), end_at=at(16, day=20))

        await reconciliation.ingest_event(invoice_payload())

        assert (await load_booking(session_factory, first.id)).status == BookingStatus.APPROVED
        assert (await load_booking(session_factory, second.id)).status == BookingStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_decided_bookings_not_matched_on_ingest(self, reconciliation, insert_booking):
        await insert_booking(status=BookingStatus.REJECTED)

        result = await reconciliation.ingest_event(invoice_payload())

        assert result.matched is False


class TestBillingPeriod:
    @pytest.mark.asyncio
    async def test_webhook_requires_same_month(self, reconciliation, insert_booking):
        await insert_booking(start_at=at(10, day=5, month=4), end_at=at(13, day=5, month=4))

        result = await reconciliation.ingest_event(invoice_payload(item_date="2027-03-01"))

        assert result.matched is False

    @pytest.mark.asyncio
    async def test_poll_ignores_billing_month(self, reconciliation, insert_booking):
        booking = await insert_booking(start_at=at(10, day=5, month=4), end_at=at(13, day=5, month=4))

        result = await reconciliation.ingest_event(
            invoice_payload(item_date="2027-03-01"), match_billing_period=False
        )

        assert result.booking_id == booking.id


# ============================================================================
# Operator corrections
# ============================================================================


class TestDismissRestore:
    @pytest.mark.asyncio
    async def test_dismissed_record_never_matches(
        self, reconciliation, insert_booking, session_factory, users, audit_entries
    ):
        await reconciliation.ingest_event(invoice_payload())
        record = await load_record(session_factory, "inv_1")
        await reconciliation.dismiss_record(record.id, "Refunded", users["council"])
        await insert_booking()

        assert await reconciliation.retry_match() == 0
        outcome = await reconciliation.try_approve(record)
        assert outcome.reason == "dismissed"

        await reconciliation.restore_record(record.id, users["council"])
        assert await reconciliation.retry_match() == 1

        logged = {e.action for e in await audit_entries()}
        assert {"PAYMENT_DISMISSED", "PAYMENT_RESTORED", "BOOKING_PAYMENT_APPROVED"} <= logged

    @pytest.mark.asyncio
    async def test_dismiss_requires_reason(self, reconciliation, session_factory, users):
        await reconciliation.ingest_event(invoice_payload())
        record = await load_record(session_factory, "inv_1")

        with pytest.raises(BookingValidationError) as exc_info:
            await reconciliation.dismiss_record(record.id, "   ", users["council"])

        assert exc_info.value.error_code == "REASON_REQUIRED"

    @pytest.mark.asyncio
    async def test_concierge_cannot_edit_ledger(self, reconciliation, session_factory, users):
        await reconciliation.ingest_event(invoice_payload())
        record = await load_record(session_factory, "inv_1")

        with pytest.raises(AuthorizationError):
            await reconciliation.dismiss_record(record.id, "Refunded", users["concierge2"])


class TestSetFeeType:
    @pytest.mark.asyncio
    async def test_classify_then_match(self, reconciliation, insert_booking, session_factory, users, audit_entries):
        booking = await insert_booking(booking_type=BookingType.MOVE_OUT)
        await reconciliation.ingest_event(invoice_payload(product_key="Elevator deposit"))
        record = await load_record(session_factory, "inv_1")
        assert record.fee_type == FeeType.UNKNOWN

        result = await reconciliation.set_fee_type(record.id, FeeType.MOVE_OUT, users["manager"])

        assert result.approved is True
        assert result.record.fee_type == FeeType.MOVE_OUT
        assert (await load_booking(session_factory, booking.id)).status == BookingStatus.APPROVED

        fee_entries = [e for e in await audit_entries() if e.action == "PAYMENT_FEE_TYPE_SET"]
        assert fee_entries[0].metadata_ == {"invoice_id": "inv_1", "old": "unknown", "new": "move_out"}

    @pytest.mark.asyncio
    async def test_unknown_not_allowed(self, reconciliation, session_factory, users):
        await reconciliation.ingest_event(invoice_payload())
        record = await load_record(session_factory, "inv_1")

        with pytest.raises(BookingValidationError) as exc_info:
            await reconciliation.set_fee_type(record.id, FeeType.UNKNOWN, users["council"])

        assert exc_info.value.error_code == "INVALID_FEE_TYPE"

    @pytest.mark.asyncio
    async def test_missing_record(self, reconciliation, users):
        with pytest.raises(NotFoundError):
            await reconciliation.set_fee_type(uuid4(), FeeType.MOVE_IN, users["council"])


class TestRetryMatch:
    @pytest.mark.asyncio
    async def test_links_already_approved_booking_without_reapproving(
        self, reconciliation, insert_booking, session_factory, users, audit_entries
    ):
        booking = await insert_booking(status=BookingStatus.APPROVED, approved_by_id=users["council"].id)
        await reconciliation.ingest_event(invoice_payload())
        assert await count_links(session_factory) == 0

        assert await reconciliation.retry_match() == 1

        async with session_factory() as session:
            link = await session.scalar(select(ApprovalLink))
        assert link.booking_id == booking.id
        assert (await load_booking(session_factory, booking.id)).approved_by_id == users["council"].id
        assert await audit_entries(booking.id) == []

    @pytest.mark.asyncio
    async def test_linked_records_skipped(self, reconciliation, insert_booking):
        await insert_booking()
        await reconciliation.ingest_event(invoice_payload())

        assert await reconciliation.retry_match() == 0


class TestLedger:
    @pytest.mark.asyncio
    async def test_split_by_state(self, reconciliation, insert_booking, session_factory, users):
        await insert_booking()
        await reconciliation.ingest_event(invoice_payload("inv_matched"))
        await reconciliation.ingest_event(invoice_payload("inv_open", notes="Unit 2203"))
        await reconciliation.ingest_event(invoice_payload("inv_dismissed", notes="Unit 907"))
        dismissed = await load_record(session_factory, "inv_dismissed")
        await reconciliation.dismiss_record(dismissed.id, "Duplicate charge", users["council"])

        ledger = await reconciliation.get_ledger(users["concierge2"])

        assert [e.record.invoice_id for e in ledger.matched] == ["inv_matched"]
        assert ledger.matched[0].booking_id is not None
        assert [e.record.invoice_id for e in ledger.unmatched] == ["inv_open"]
        assert [e.record.invoice_id for e in ledger.dismissed] == ["inv_dismissed"]

    @pytest.mark.asyncio
    async def test_filtered_by_billing_period(self, reconciliation, users):
        await reconciliation.ingest_event(invoice_payload("inv_march"))
        await reconciliation.ingest_event(invoice_payload("inv_april", item_date="2027-04-02"))

        ledger = await reconciliation.get_ledger(users["council"], billing_period="2027-04")

        assert [e.record.invoice_id for e in ledger.unmatched] == ["inv_april"]
