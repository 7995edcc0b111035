"""
Payment Ledger API Endpoints

- GET /api/admin/payments - Ledger split into matched / unmatched / dismissed
- POST /api/admin/payments/retry-match - Re-run matching for unlinked records
- PATCH /api/admin/payments/{id}/fee-type - Classify a record by hand
- POST /api/admin/payments/{id}/dismiss - Exclude a record from matching
- POST /api/admin/payments/{id}/restore - Undo a dismissal
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from api.dependencies import ActorDep, EngineDep
from api.models.payment_models import (
    DismissRequest,
    FeeTypeUpdate,
    LedgerResponse,
    PaymentRecordResponse,
    RetryMatchResponse,
    SetFeeTypeResponse,
)
from engine.permissions import OVERRIDE_ROLES, require_role
from engine.services.reconciliation_service import LedgerEntry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/payments", tags=["payments"])


@router.get("", response_model=LedgerResponse)
async def get_ledger(
    engine: EngineDep,
    actor: ActorDep,
    month: Annotated[str | None, Query(pattern=r"^\d{4}-\d{2}$")] = None,
) -> LedgerResponse:
    ledger = await engine.reconciliation.get_ledger(actor, month)
    return LedgerResponse.from_ledger(ledger, month)


@router.post("/retry-match", response_model=RetryMatchResponse)
async def retry_match(engine: EngineDep, actor: ActorDep) -> RetryMatchResponse:
    require_role(actor, OVERRIDE_ROLES, "re-run payment matching")
    matched_count = await engine.reconciliation.retry_match()
    logger.info(f"Manual re-match by {actor.email}: matched_count={matched_count}", extra={"actor_id": actor.id})
    return RetryMatchResponse(matched_count=matched_count)


@router.patch("/{record_id}/fee-type", response_model=SetFeeTypeResponse)
async def set_fee_type(
    record_id: UUID, payload: FeeTypeUpdate, engine: EngineDep, actor: ActorDep
) -> SetFeeTypeResponse:
    result = await engine.reconciliation.set_fee_type(record_id, payload.fee_type, actor)
    return SetFeeTypeResponse(
        payment=PaymentRecordResponse.from_entry(LedgerEntry(record=result.record)),
        approved=result.approved,
    )


@router.post("/{record_id}/dismiss", response_model=PaymentRecordResponse)
async def dismiss_record(
    record_id: UUID, payload: DismissRequest, engine: EngineDep, actor: ActorDep
) -> PaymentRecordResponse:
    record = await engine.reconciliation.dismiss_record(record_id, payload.reason, actor)
    return PaymentRecordResponse.from_entry(LedgerEntry(record=record))


@router.post("/{record_id}/restore", response_model=PaymentRecordResponse)
async def restore_record(record_id: UUID, engine: EngineDep, actor: ActorDep) -> PaymentRecordResponse:
    record = await engine.reconciliation.restore_record(record_id, actor)
    return PaymentRecordResponse.from_entry(LedgerEntry(record=record))
