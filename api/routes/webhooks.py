"""Invoice Ninja webhook route handler."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from api.dependencies import EngineDep
from api.middleware.signature_validation import validate_invoice_ninja_signature
from api.models.payment_models import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/invoice-ninja", response_model=WebhookAck)
async def receive_invoice_ninja_webhook(
    engine: EngineDep,
    payload: Annotated[dict[str, Any], Depends(validate_invoice_ninja_signature)],
) -> WebhookAck:
    """
    Receive a paid-invoice event from Invoice Ninja.

    Always acknowledges with 200 once the signature checks out, even when
    the event is ignored or processing fails, so the sender does not retry.
    Matching on this path is restricted to the invoice's billing month.

    Raises:
        HTTPException 401: Missing or invalid X-Ninja-Signature
    """
    result = await engine.reconciliation.ingest_event(payload, match_billing_period=True)
    logger.info(
        f"Invoice Ninja webhook processed: created={result.created}, matched={result.matched}, "
        f"ignored={result.ignored_reason}",
        extra={"invoice_id": result.invoice_id, "booking_id": result.booking_id},
    )
    return WebhookAck(received=True)
