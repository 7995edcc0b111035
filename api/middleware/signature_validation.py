"""Middleware for webhook signature validation."""

import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import HTTPException, Request

from shared.config import get_settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Ninja-Signature"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


async def validate_invoice_ninja_signature(request: Request) -> dict[str, Any]:
    """
    Validate the Invoice Ninja webhook signature and parse the payload.

    Verification is skipped when no webhook secret is configured. A body
    that is not a JSON object parses to {} so the event is acknowledged and
    ignored rather than retried by the sender.

    Args:
        request: FastAPI request object

    Returns:
        Parsed webhook payload

    Raises:
        HTTPException: 401 if the signature is missing or does not match
    """
    settings = get_settings()
    body = await request.body()

    secret = settings.INVOICE_NINJA_WEBHOOK_SECRET
    if secret:
        signature_header: str | None = request.headers.get(SIGNATURE_HEADER)
        if not signature_header:
            logger.warning("Invoice Ninja webhook received without signature header")
            raise HTTPException(status_code=401, detail="Invalid signature")

        expected = compute_signature(body, secret)
        if not hmac.compare_digest(signature_header.strip().lower(), expected):
            logger.warning("Invoice Ninja signature verification failed")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invoice Ninja webhook body is not valid JSON: {e}")
        return {}

    return payload if isinstance(payload, dict) else {}
