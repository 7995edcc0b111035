"""
Integration tests for the HTTP API.

The engine is built against the in-memory test database and attached to
app.state directly; lifespan startup is not run.
"""

import json
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from api.main import app
from api.middleware.signature_validation import SIGNATURE_HEADER, compute_signature
from database.models import BookingStatus
from engine.container import build_engine
from shared.config import get_settings

BOOKING_BODY = {
    "resident_name": "Jamie Resident",
    "resident_email": "jamie@example.com",
    "unit": "1105",
    "public_unit_mask": "11xx",
    "booking_type": "MOVE_IN",
    "start_at": "2027-03-10T10:00:00-08:00",
    "end_at": "2027-03-10T13:00:00-08:00",
}


@pytest.fixture
async def client(session_factory, mailer, users):
    app.state.engine = await build_engine(get_settings(), session_factory=session_factory, mailer=mailer)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
    del app.state.engine


def as_actor(user) -> dict[str, str]:
    return {"X-Actor-Id": str(user.id)}


# ============================================================================
# Public endpoints
# ============================================================================


class TestPublicEndpoints:
    @pytest.mark.asyncio
    async def test_submit_booking(self, client):
        response = await client.post("/api/bookings", json=BOOKING_BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "SUBMITTED"
        assert data["move_date"] == "2027-03-10"

    @pytest.mark.asyncio
    async def test_conflict_is_409(self, client):
        await client.post("/api/bookings", json=BOOKING_BODY)

        response = await client.post(
            "/api/bookings",
            json={**BOOKING_BODY, "start_at": "2027-03-10T13:00:00-08:00", "end_at": "2027-03-10T16:00:00-08:00"},
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_slot_violation_is_400_with_message(self, client):
        response = await client.post(
            "/api/bookings",
            json={**BOOKING_BODY, "start_at": "2027-03-10T09:00:00-08:00", "end_at": "2027-03-10T12:00:00-08:00"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "OUTSIDE_HOURS"
        assert body["error_message"] == "Weekday moves must fit within one permitted slot: 10am–1pm or 1pm–4pm"

    @pytest.mark.asyncio
    async def test_public_calendar_masks_unit(self, client, insert_booking):
        await insert_booking(status=BookingStatus.APPROVED, public_unit_mask="11xx")

        response = await client.get("/api/public/bookings")

        assert response.status_code == 200
        [entry] = response.json()
        assert entry["unit"] == "11xx"
        assert "resident_email" not in entry

    @pytest.mark.asyncio
    async def test_permitted_times_weekday_move(self, client):
        response = await client.get("/api/permitted-times", params={"date": "2027-03-10", "type": "MOVE_IN"})

        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "fixed_slots"
        assert data["slots"] == [
            {"start": "10:00:00", "end": "13:00:00"},
            {"start": "13:00:00", "end": "16:00:00"},
        ]
        assert data["hours"] is None

    @pytest.mark.asyncio
    async def test_permitted_times_holiday(self, client):
        response = await client.get("/api/permitted-times", params={"date": "2027-03-26", "type": "DELIVERY"})

        data = response.json()
        assert data["description"] == "No bookings permitted"
        assert data["holiday_name"] == "Good Friday"


# ============================================================================
# Email intake
# ============================================================================


class TestEmailIntake:
    @pytest.mark.asyncio
    async def test_valid_secret_creates_pending(self, client):
        response = await client.post(
            "/api/intake/email", json=BOOKING_BODY, headers={"X-Intake-Secret": "intake-secret"}
        )

        assert response.status_code == 201
        assert response.json()["status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, client):
        response = await client.post("/api/intake/email", json=BOOKING_BODY, headers={"X-Intake-Secret": "nope"})

        assert response.status_code == 401


# ============================================================================
# Staff endpoints
# ============================================================================


class TestStaffEndpoints:
    @pytest.mark.asyncio
    async def test_missing_actor_is_401(self, client, insert_booking):
        booking = await insert_booking()

        response = await client.get(f"/api/admin/bookings/{booking.id}")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_actor_is_401(self, client, insert_booking):
        booking = await insert_booking()

        response = await client.get(
            f"/api/admin/bookings/{booking.id}",
            headers={"X-Actor-Id": "00000000-0000-0000-0000-000000000000"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_approve_via_patch(self, client, insert_booking, users):
        booking = await insert_booking()

        response = await client.patch(
            f"/api/admin/bookings/{booking.id}", json={"status": "APPROVED"}, headers=as_actor(users["concierge2"])
        )

        assert response.status_code == 200
        assert response.json()["status"] == "APPROVED"
        assert response.json()["approved_by_id"] == str(users["concierge2"].id)

    @pytest.mark.asyncio
    async def test_illegal_transition_is_400(self, client, insert_booking, users):
        booking = await insert_booking(status=BookingStatus.REJECTED)

        response = await client.patch(
            f"/api/admin/bookings/{booking.id}", json={"status": "APPROVED"}, headers=as_actor(users["council"])
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_quick_entry_override_end_to_end(self, client, insert_booking, users):
        await insert_booking(status=BookingStatus.APPROVED)
        conflicting = {
            **BOOKING_BODY,
            "unit": "804",
            "start_at": "2027-03-10T13:00:00-08:00",
            "end_at": "2027-03-10T16:00:00-08:00",
        }

        blocked = await client.post(
            "/api/admin/quick-entry/approve", json=conflicting, headers=as_actor(users["concierge2"])
        )
        overridden = await client.post(
            "/api/admin/quick-entry/approve",
            json={**conflicting, "override_conflict": True},
            headers=as_actor(users["council"]),
        )

        assert blocked.status_code == 409
        assert overridden.status_code == 201
        assert overridden.json()["status"] == "APPROVED"

    @pytest.mark.asyncio
    async def test_missing_booking_is_404(self, client, users):
        response = await client.delete(
            "/api/admin/bookings/00000000-0000-0000-0000-000000000000", headers=as_actor(users["council"])
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_user_forbidden_for_concierge(self, client, users):
        response = await client.delete(
            f"/api/admin/users/{users['manager'].id}", headers=as_actor(users["concierge2"])
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_me(self, client, users):
        response = await client.get("/api/admin/me", headers=as_actor(users["manager"]))

        assert response.json()["role"] == "PROPERTY_MANAGER"

    @pytest.mark.asyncio
    async def test_delete_self_is_403(self, client, users):
        response = await client.delete(f"/api/admin/users/{users['council'].id}", headers=as_actor(users["council"]))

        assert response.status_code == 403
        assert response.json()["error_code"] == "SELF_DELETE"

    @pytest.mark.asyncio
    async def test_create_and_update_user(self, client, users):
        created = await client.post(
            "/api/admin/users",
            json={"name": "Day Desk", "email": "day@example.com", "role": "CONCIERGE"},
            headers=as_actor(users["council"]),
        )
        assert created.status_code == 201
        user_id = created.json()["id"]

        updated = await client.patch(
            f"/api/admin/users/{user_id}", json={"role": "COUNCIL"}, headers=as_actor(users["manager"])
        )
        listed = await client.get("/api/admin/users", headers=as_actor(users["manager"]))

        assert updated.status_code == 200
        assert updated.json()["role"] == "COUNCIL"
        assert user_id in [u["id"] for u in listed.json()]

    @pytest.mark.asyncio
    async def test_duplicate_user_email_is_400(self, client, users):
        body = {"name": "Day Desk", "email": "day@example.com", "role": "CONCIERGE"}
        await client.post("/api/admin/users", json=body, headers=as_actor(users["council"]))

        response = await client.post(
            "/api/admin/users",
            json={**body, "email": "DAY@example.com"},
            headers=as_actor(users["council"]),
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "EMAIL_IN_USE"

    @pytest.mark.asyncio
    async def test_recipient_crud(self, client, users):
        headers = as_actor(users["council"])
        created = await client.post(
            "/api/admin/recipients",
            json={"email": "dock@example.com", "notify_on": ["SUBMITTED"]},
            headers=headers,
        )
        assert created.status_code == 201
        recipient_id = created.json()["id"]

        patched = await client.patch(
            f"/api/admin/recipients/{recipient_id}", json={"notify_on": ["APPROVED", "REJECTED"]}, headers=headers
        )
        assert patched.json()["notify_on"] == ["APPROVED", "REJECTED"]
        assert patched.json()["enabled"] is True

        deleted = await client.delete(f"/api/admin/recipients/{recipient_id}", headers=headers)
        listed = await client.get("/api/admin/recipients", headers=headers)

        assert deleted.json() == {"ok": True}
        assert [r["email"] for r in listed.json()] == ["council-list@test.local"]

    @pytest.mark.asyncio
    async def test_recipients_forbidden_for_concierge(self, client, users):
        response = await client.get("/api/admin/recipients", headers=as_actor(users["concierge2"]))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_notify_event_is_422(self, client, users):
        response = await client.post(
            "/api/admin/recipients",
            json={"email": "dock@example.com", "notify_on": ["PAID"]},
            headers=as_actor(users["council"]),
        )

        assert response.status_code == 422


# ============================================================================
# Payments and webhook
# ============================================================================

INVOICE = {
    "data": {
        "id": "inv_1",
        "client_id": "client_1",
        "paid_date": "2027-03-02",
        "line_items": [{"product_key": "Move-In Fee", "notes": "Unit 1105", "date": "2027-03-01"}],
    }
}


class TestPaymentEndpoints:
    @pytest.mark.asyncio
    async def test_webhook_approves_booking(self, client, insert_booking, users):
        booking = await insert_booking()

        response = await client.post("/webhooks/invoice-ninja", json=INVOICE)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        detail = await client.get(f"/api/admin/bookings/{booking.id}", headers=as_actor(users["council"]))
        assert detail.json()["status"] == "APPROVED"

    @pytest.mark.asyncio
    async def test_webhook_acks_garbage(self, client):
        response = await client.post(
            "/webhooks/invoice-ninja", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_webhook_acks_malformed_invoice(self, client):
        response = await client.post(
            "/webhooks/invoice-ninja",
            json={"data": {"id": "inv_x", "client_id": "c1", "paid_date": 10**20, "line_items": {"notes": "Unit 1105"}}},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

    @pytest.mark.asyncio
    async def test_webhook_signature_enforced(self, client):
        body = json.dumps(INVOICE).encode()
        with patch("api.middleware.signature_validation.get_settings") as mock_settings:
            mock_settings.return_value.INVOICE_NINJA_WEBHOOK_SECRET = "whsec"
            rejected = await client.post("/webhooks/invoice-ninja", content=body, headers={SIGNATURE_HEADER: "bad"})
            accepted = await client.post(
                "/webhooks/invoice-ninja",
                content=body,
                headers={SIGNATURE_HEADER: compute_signature(body, "whsec")},
            )

        assert rejected.status_code == 401
        assert accepted.status_code == 200

    @pytest.mark.asyncio
    async def test_ledger_and_dismiss(self, client, users):
        await client.post("/webhooks/invoice-ninja", json=INVOICE)

        ledger = await client.get("/api/admin/payments", params={"month": "2027-03"}, headers=as_actor(users["council"]))
        [record] = ledger.json()["unmatched"]

        dismissed = await client.post(
            f"/api/admin/payments/{record['id']}/dismiss",
            json={"reason": "Refunded"},
            headers=as_actor(users["council"]),
        )

        assert dismissed.status_code == 200
        assert dismissed.json()["dismissed"] is True
        assert dismissed.json()["dismissed_reason"] == "Refunded"

    @pytest.mark.asyncio
    async def test_retry_match_requires_override_role(self, client, users):
        forbidden = await client.post("/api/admin/payments/retry-match", headers=as_actor(users["concierge2"]))
        allowed = await client.post("/api/admin/payments/retry-match", headers=as_actor(users["manager"]))

        assert forbidden.status_code == 403
        assert allowed.json() == {"matched_count": 0}

    @pytest.mark.asyncio
    async def test_invalid_month_rejected(self, client, users):
        response = await client.get("/api/admin/payments", params={"month": "March"}, headers=as_actor(users["council"]))

        assert response.status_code == 422
