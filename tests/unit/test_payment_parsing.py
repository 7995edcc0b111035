"""
Unit tests for Invoice Ninja payload parsing.

Tests coverage:
- Unit extraction patterns and their precedence
- Unit variants used for matching
- Billing period derivation (line item date, invoice date, paid date)
- Webhook ("data"-wrapped) and polled (bare) payload shapes
- Payloads without identifiers are ignored
- Malformed line items and out-of-range timestamps degrade to defaults
"""

from datetime import UTC, datetime

import pytest

from engine.services.payment_parsing import (
    PaymentEvent,
    billing_period_of,
    extract_unit,
    parse_payment_event,
    unit_variants,
)


class TestExtractUnit:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Move-in fee Unit 1105", "1105"),
            ("apt #12B move out", "12B"),
            ("Suite 4-301", "4-301"),
            ("Move out #907", "907"),
            ("Tower T4-1105 move out", "T4-1105"),
            ("Move in fee 2203", "2203"),
        ],
    )
    def test_patterns(self, text, expected):
        assert extract_unit(text) == expected

    def test_unit_keyword_wins_over_bare_number(self):
        assert extract_unit("Invoice 2025 for unit 804") == "804"

    @pytest.mark.parametrize("text", [None, "", "Elevator deposit", "Fee 12"])
    def test_no_unit(self, text):
        assert extract_unit(text) is None

    def test_overlong_match_is_skipped(self):
        assert extract_unit("unit abcdefghijklmnopqrstuvwxyz 1105") == "1105"


class TestUnitVariants:
    def test_plain_unit(self):
        assert unit_variants("1105") == ["1105"]

    def test_prefixed_unit_adds_suffix(self):
        assert unit_variants("T4-1105") == ["T4-1105", "1105"]


class TestParsePaymentEvent:
    def test_webhook_shape(self):
        payload = {
            "data": {
                "id": "inv_1",
                "client_id": "cl_9",
                "paid_date": "2027-03-02",
                "date": "2027-02-27",
                "line_items": [
                    {"product_key": "Move-In Fee", "notes": "Unit 1105", "date": "2027-03-01"}
                ],
            }
        }

        event = parse_payment_event(payload)

        assert event == PaymentEvent(
            invoice_id="inv_1",
            client_id="cl_9",
            paid_at=datetime(2027, 3, 2, tzinfo=UTC),
            billing_period="2027-03",
            product_key="Move-In Fee",
            notes="Unit 1105",
        )
        assert event.unit == "1105"
        assert event.description == "Move-In Fee Unit 1105"

    def test_bare_polled_shape(self):
        payload = {
            "id": "inv_2",
            "client_id": "cl_3",
            "date": "2027-04-30",
            "line_items": [{"product_key": "Move out 907", "notes": ""}],
        }

        event = parse_payment_event(payload)

        assert event.invoice_id == "inv_2"
        assert event.billing_period == "2027-04"
        assert event.unit == "907"

    def test_notes_take_precedence_over_product_key(self):
        payload = {
            "id": "inv_3",
            "client_id": "cl_3",
            "line_items": [{"product_key": "Move-in 1204", "notes": "Suite 4-301"}],
        }
        assert parse_payment_event(payload).unit == "4-301"

    def test_period_falls_back_to_paid_time(self):
        now = datetime(2027, 6, 15, 12, 0, tzinfo=UTC)
        event = parse_payment_event({"id": "inv_4", "client_id": "cl_1"}, now=now)

        assert event.paid_at == now
        assert event.billing_period == "2027-06"
        assert event.unit is None

    def test_epoch_updated_at_used_as_paid_time(self):
        event = parse_payment_event({"id": "inv_5", "client_id": "cl_1", "updated_at": 1804377600})
        assert event.paid_at == datetime.fromtimestamp(1804377600, UTC)

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"data": {"client_id": "cl_1"}},
            {"id": "inv_6"},
            {"data": {"id": "", "client_id": "cl_1"}},
        ],
    )
    def test_missing_identifiers(self, payload):
        assert parse_payment_event(payload) is None

    def test_line_items_object_is_ignored(self):
        event = parse_payment_event(
            {"data": {"id": "inv_7", "client_id": "cl_1", "line_items": {"product_key": "Move-in"}}},
            now=datetime(2027, 6, 15, tzinfo=UTC),
        )

        assert event.product_key == ""
        assert event.billing_period == "2027-06"

    @pytest.mark.parametrize("paid_date", [10**20, -(10**20), float("nan")])
    def test_out_of_range_epoch_falls_back(self, paid_date):
        now = datetime(2027, 6, 15, tzinfo=UTC)
        event = parse_payment_event({"id": "inv_8", "client_id": "cl_1", "paid_date": paid_date}, now=now)

        assert event.paid_at == now


def test_billing_period_format():
    assert billing_period_of(datetime(2027, 1, 5, tzinfo=UTC)) == "2027-01"
