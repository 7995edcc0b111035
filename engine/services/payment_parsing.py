"""
Parsing of Invoice Ninja payloads into payment facts.

Webhook deliveries wrap the invoice in {"data": {...}}; polled invoices are
bare. Both shapes are accepted.
"""

import logging
import re
from datetime import UTC, date, datetime
from typing import Any, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

UNIT_MAX_LENGTH = 20

# Tried in order; first match no longer than UNIT_MAX_LENGTH wins
UNIT_PATTERNS: tuple[re.Pattern, ...] = (
    # "Unit 1105", "apt #12B", "Suite 4-301", "apartment 7"
    re.compile(r"\b(?:unit|apt|suite|apartment)\s*#?\s*([a-z0-9][-a-z0-9]*)", re.IGNORECASE),
    # "#1105"
    re.compile(r"#\s*([a-z0-9][-a-z0-9]*)", re.IGNORECASE),
    # building-prefixed codes: "T4-1105"
    re.compile(r"\b([A-Z]\d{1,2}-\d{2,4})\b"),
    # bare 3-4 digit number
    re.compile(r"\b(\d{3,4})\b"),
)


def extract_unit(text: Optional[str]) -> Optional[str]:
    """
    Extract a unit identifier from free text.

    Examples:
        >>> extract_unit("Move-in fee Unit 1105")
        '1105'
        >>> extract_unit("Tower T4-1105 move out")
        'T4-1105'
        >>> extract_unit("Elevator deposit")
    """
    if not text:
        return None

    for pattern in UNIT_PATTERNS:
        match = pattern.search(text)
        if match and len(match.group(1)) <= UNIT_MAX_LENGTH:
            return match.group(1)
    return None


def unit_variants(unit: str) -> list[str]:
    """The unit plus its suffix after the last building-prefix dash."""
    variants = [unit]
    if "-" in unit:
        suffix = unit.rsplit("-", 1)[1]
        if suffix and suffix not in variants:
            variants.append(suffix)
    return variants


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Invoice timestamp out of range: {value!r}")
            return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed_date = date.fromisoformat(str(value)[:10])
        except ValueError:
            logger.warning(f"Unparseable invoice date: {value!r}")
            return None
        parsed = datetime(parsed_date.year, parsed_date.month, parsed_date.day)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def billing_period_of(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


class PaymentEvent(BaseModel):
    """A paid invoice reduced to what the matcher needs."""

    invoice_id: str
    client_id: str
    paid_at: datetime
    billing_period: str
    product_key: str = ""
    notes: str = ""

    @property
    def description(self) -> str:
        return f"{self.product_key} {self.notes}".strip()

    @property
    def unit(self) -> Optional[str]:
        return extract_unit(self.notes) or extract_unit(self.product_key)


def parse_payment_event(payload: dict[str, Any], now: datetime | None = None) -> Optional[PaymentEvent]:
    """
    Reduce an Invoice Ninja invoice payload to a PaymentEvent.

    Billing period comes from the first line item's date, else the invoice
    date, else the paid timestamp.

    Returns:
        PaymentEvent, or None if the payload lacks an invoice or client id
    """
    invoice = payload.get("data") if isinstance(payload.get("data"), dict) else payload

    invoice_id = invoice.get("id") or payload.get("id")
    client_id = invoice.get("client_id") or payload.get("client_id")
    if not invoice_id or not client_id:
        return None

    paid_at = (
        _parse_timestamp(invoice.get("paid_date"))
        or _parse_timestamp(invoice.get("updated_at"))
        or now
        or datetime.now(UTC)
    )

    line_items = invoice.get("line_items")
    if not isinstance(line_items, list):
        line_items = []
    first_item = line_items[0] if line_items and isinstance(line_items[0], dict) else {}

    period_source = (
        _parse_timestamp(first_item.get("date"))
        or _parse_timestamp(invoice.get("date"))
        or paid_at
    )

    return PaymentEvent(
        invoice_id=str(invoice_id),
        client_id=str(client_id),
        paid_at=paid_at,
        billing_period=billing_period_of(period_source),
        product_key=str(first_item.get("product_key") or ""),
        notes=str(first_item.get("notes") or ""),
    )
