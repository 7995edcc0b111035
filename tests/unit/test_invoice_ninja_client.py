"""Unit tests for the Invoice Ninja polling client."""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from tenacity import wait_none

from shared.invoice_ninja_client import PAID_STATUS_ID, InvoiceNinjaClient


@pytest.fixture
def client():
    settings = SimpleNamespace(
        INVOICE_NINJA_URL="https://billing.example.com/",
        INVOICE_NINJA_API_TOKEN="token-123",
    )
    return InvoiceNinjaClient(settings)


@pytest.fixture
def no_retry_wait():
    with patch.object(InvoiceNinjaClient._get_page.retry, "wait", wait_none()):
        yield


class TestGetPage:
    @pytest.mark.asyncio
    async def test_request_shape(self, client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"id": "inv_1"}]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            body = await client._get_page(http, 1804377600, 2)

        assert body == {"data": [{"id": "inv_1"}]}
        request = seen[0]
        assert request.url.path == "/api/v1/invoices"
        assert request.url.params["status_id"] == str(PAID_STATUS_ID)
        assert request.url.params["updated_at"] == "1804377600"
        assert request.url.params["page"] == "2"
        assert request.headers["X-Api-Token"] == "token-123"
        assert request.headers["X-Requested-With"] == "XMLHttpRequest"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, client, no_retry_wait):
        responses = iter([httpx.Response(502), httpx.Response(200, json={"data": []})])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            body = await client._get_page(http, 0, 1)

        assert body == {"data": []}

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, client, no_retry_wait):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(503)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(httpx.HTTPStatusError):
                await client._get_page(http, 0, 1)

        assert len(attempts) == 3


class TestFetchPaidInvoices:
    @pytest.mark.asyncio
    async def test_follows_pagination(self, client):
        pages = [
            {"data": [{"id": "inv_1"}, {"id": "inv_2"}], "meta": {"pagination": {"total_pages": 2}}},
            {"data": [{"id": "inv_3"}], "meta": {"pagination": {"total_pages": 2}}},
        ]
        since = datetime(2027, 3, 10, 8, 0, tzinfo=UTC)

        with patch.object(InvoiceNinjaClient, "_get_page", AsyncMock(side_effect=pages)) as mock_page:
            invoices = await client.fetch_paid_invoices(since)

        assert [i["id"] for i in invoices] == ["inv_1", "inv_2", "inv_3"]
        assert mock_page.await_count == 2
        assert mock_page.await_args_list[0].args[1:] == (int(since.timestamp()), 1)

    @pytest.mark.asyncio
    async def test_missing_meta_is_single_page(self, client):
        with patch.object(InvoiceNinjaClient, "_get_page", AsyncMock(return_value={"data": None})) as mock_page:
            invoices = await client.fetch_paid_invoices(datetime(2027, 3, 10, tzinfo=UTC))

        assert invoices == []
        mock_page.assert_awaited_once()
