"""Unit tests for Invoice Ninja webhook signature validation."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from api.middleware.signature_validation import (
    SIGNATURE_HEADER,
    compute_signature,
    validate_invoice_ninja_signature,
)

SECRET = "whsec_test"


def make_request(body: bytes, headers: dict[str, str] | None = None) -> MagicMock:
    request = MagicMock()
    request.body = AsyncMock(return_value=body)
    request.headers = headers or {}
    return request


@pytest.fixture
def webhook_secret():
    with patch("api.middleware.signature_validation.get_settings") as mock_settings:
        mock_settings.return_value.INVOICE_NINJA_WEBHOOK_SECRET = SECRET
        yield mock_settings


@pytest.fixture
def no_webhook_secret():
    with patch("api.middleware.signature_validation.get_settings") as mock_settings:
        mock_settings.return_value.INVOICE_NINJA_WEBHOOK_SECRET = ""
        yield mock_settings


class TestSignatureValidation:
    @pytest.mark.asyncio
    async def test_valid_signature_returns_payload(self, webhook_secret):
        body = json.dumps({"id": "inv_1", "amount": 250}).encode()
        request = make_request(body, {SIGNATURE_HEADER: compute_signature(body, SECRET)})

        payload = await validate_invoice_ninja_signature(request)

        assert payload == {"id": "inv_1", "amount": 250}

    @pytest.mark.asyncio
    async def test_signature_comparison_ignores_case_and_whitespace(self, webhook_secret):
        body = b'{"id": "inv_1"}'
        signature = f"  {compute_signature(body, SECRET).upper()}\n"

        payload = await validate_invoice_ninja_signature(make_request(body, {SIGNATURE_HEADER: signature}))

        assert payload == {"id": "inv_1"}

    @pytest.mark.asyncio
    async def test_wrong_signature_rejected(self, webhook_secret):
        body = b'{"id": "inv_1"}'
        request = make_request(body, {SIGNATURE_HEADER: compute_signature(body, "other-secret")})

        with pytest.raises(HTTPException) as exc_info:
            await validate_invoice_ninja_signature(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_header_rejected(self, webhook_secret):
        with pytest.raises(HTTPException) as exc_info:
            await validate_invoice_ninja_signature(make_request(b'{"id": "inv_1"}'))

        assert exc_info.value.detail == "Invalid signature"

    @pytest.mark.asyncio
    async def test_no_secret_skips_verification(self, no_webhook_secret):
        payload = await validate_invoice_ninja_signature(make_request(b'{"id": "inv_2"}'))

        assert payload == {"id": "inv_2"}


class TestPayloadParsing:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]", b"\xff\xfe", b""])
    async def test_unusable_body_parses_to_empty(self, no_webhook_secret, body):
        assert await validate_invoice_ninja_signature(make_request(body)) == {}
