"""Integration tests for booking and user deletion."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from database.models import ApprovalLink, AuditLog, Booking, BookingStatus, FeeType, PaymentRecord, User, UserRole
from engine.exceptions import AuthorizationError, BookingValidationError, NotFoundError


async def get_row(session_factory, model, row_id):
    async with session_factory() as session:
        return await session.get(model, row_id)


class TestDeleteBooking:
    @pytest.mark.asyncio
    async def test_audit_history_survives(
        self, admin_service, booking_transaction, insert_booking, users, session_factory, audit_entries
    ):
        booking = await insert_booking()
        await booking_transaction.decide(booking.id, users["concierge2"], status=BookingStatus.APPROVED)

        await admin_service.delete_booking(booking.id, users["concierge2"])

        assert await get_row(session_factory, Booking, booking.id) is None
        entries = {e.action: e for e in await audit_entries()}
        assert entries["BOOKING_APPROVED"].booking_id is None
        deleted = entries["BOOKING_DELETED"]
        assert deleted.actor_id == users["concierge2"].id
        assert deleted.metadata_["booking_id"] == str(booking.id)
        assert deleted.metadata_["snapshot"]["status"] == "APPROVED"

    @pytest.mark.asyncio
    async def test_approval_link_kept(self, admin_service, reconciliation, insert_booking, users, session_factory):
        booking = await insert_booking()
        await reconciliation.ingest_event(
            {
                "id": "inv_1",
                "client_id": "client_1",
                "line_items": [{"product_key": "Move-In Fee", "notes": "Unit 1105", "date": "2027-03-01"}],
            }
        )

        await admin_service.delete_booking(booking.id, users["council"])

        async with session_factory() as session:
            link = await session.scalar(select(ApprovalLink).where(ApprovalLink.invoice_id == "inv_1"))
            record = await session.scalar(select(PaymentRecord).where(PaymentRecord.invoice_id == "inv_1"))
        assert link is not None
        assert link.booking_id is None
        assert record.fee_type == FeeType.MOVE_IN

    @pytest.mark.asyncio
    async def test_missing_booking(self, admin_service, users):
        with pytest.raises(NotFoundError):
            await admin_service.delete_booking(uuid4(), users["council"])


class TestDeleteUser:
    @pytest.mark.asyncio
    async def test_records_rehomed_to_system_actor(
        self, admin_service, booking_transaction, booking_request, users, system_actor, session_factory, audit_entries
    ):
        booking = await booking_transaction.quick_approve(booking_request(), users["concierge2"])

        await admin_service.delete_user(users["concierge2"].id, users["council"])

        assert await get_row(session_factory, User, users["concierge2"].id) is None
        rehomed = await get_row(session_factory, Booking, booking.id)
        assert rehomed.created_by_id == system_actor.id
        assert rehomed.approved_by_id is None

        entries = await audit_entries()
        quick = next(e for e in entries if e.action == "BOOKING_QUICK_APPROVED")
        assert quick.actor_id == system_actor.id
        deleted = next(e for e in entries if e.action == "USER_DELETED")
        assert deleted.metadata_ == {
            "user_id": str(users["concierge2"].id),
            "email": "night@test.local",
            "role": "CONCIERGE",
        }

    @pytest.mark.asyncio
    async def test_concierge_cannot_delete_users(self, admin_service, users):
        with pytest.raises(AuthorizationError):
            await admin_service.delete_user(users["manager"].id, users["concierge2"])

    @pytest.mark.asyncio
    async def test_cannot_delete_self(self, admin_service, users):
        with pytest.raises(AuthorizationError) as exc_info:
            await admin_service.delete_user(users["council"].id, users["council"])

        assert exc_info.value.error_code == "SELF_DELETE"

    @pytest.mark.asyncio
    async def test_cannot_delete_system_actor(self, admin_service, users):
        with pytest.raises(AuthorizationError) as exc_info:
            await admin_service.delete_user(users["concierge"].id, users["council"])

        assert exc_info.value.error_code == "SYSTEM_ACTOR"

    @pytest.mark.asyncio
    async def test_last_concierge_kept(self, admin_service, users, session_factory, system_actor):
        # Leave a single concierge that is not the system actor
        async with session_factory() as session:
            await session.delete(await session.get(User, users["concierge2"].id))
            lone = User(name="Weekend Desk", email="weekend@test.local", role=UserRole.CONCIERGE)
            session.add(lone)
            await session.commit()
            await session.delete(await session.get(User, system_actor.id))
            await session.commit()

        with pytest.raises(BookingValidationError) as exc_info:
            await admin_service.delete_user(lone.id, users["council"])

        assert exc_info.value.error_code == "LAST_CONCIERGE"

    @pytest.mark.asyncio
    async def test_missing_user(self, admin_service, users):
        with pytest.raises(NotFoundError):
            await admin_service.delete_user(uuid4(), users["council"])

    @pytest.mark.asyncio
    async def test_user_deletion_is_audited(self, admin_service, users, session_factory):
        await admin_service.delete_user(users["manager"].id, users["council"])

        async with session_factory() as session:
            result = await session.execute(select(AuditLog))
            entries = result.scalars().all()
        assert [(e.action, e.actor_id) for e in entries] == [("USER_DELETED", users["council"].id)]
