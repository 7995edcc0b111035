"""Pydantic models for payment ledger endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from database.models import FeeType
from engine.services.reconciliation_service import Ledger, LedgerEntry


class PaymentRecordResponse(BaseModel):
    id: UUID
    invoice_id: str
    client_id: str
    billing_period: str
    fee_type: FeeType
    unit: Optional[str] = None
    description: Optional[str] = None
    paid_at: datetime
    dismissed: bool
    dismissed_reason: Optional[str] = None
    booking_id: Optional[UUID] = None

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "PaymentRecordResponse":
        record = entry.record
        return cls(
            id=record.id,
            invoice_id=record.invoice_id,
            client_id=record.client_id,
            billing_period=record.billing_period,
            fee_type=record.fee_type,
            unit=record.unit,
            description=record.description,
            paid_at=record.paid_at,
            dismissed=record.dismissed,
            dismissed_reason=record.dismissed_reason,
            booking_id=entry.booking_id,
        )


class LedgerResponse(BaseModel):
    billing_period: Optional[str] = None
    matched: list[PaymentRecordResponse]
    unmatched: list[PaymentRecordResponse]
    dismissed: list[PaymentRecordResponse]

    @classmethod
    def from_ledger(cls, ledger: Ledger, billing_period: str | None) -> "LedgerResponse":
        return cls(
            billing_period=billing_period,
            matched=[PaymentRecordResponse.from_entry(e) for e in ledger.matched],
            unmatched=[PaymentRecordResponse.from_entry(e) for e in ledger.unmatched],
            dismissed=[PaymentRecordResponse.from_entry(e) for e in ledger.dismissed],
        )


class FeeTypeUpdate(BaseModel):
    fee_type: FeeType


class DismissRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class SetFeeTypeResponse(BaseModel):
    payment: PaymentRecordResponse
    approved: bool


class RetryMatchResponse(BaseModel):
    matched_count: int


class WebhookAck(BaseModel):
    received: bool = True
