"""
Invoice Ninja client for polling paid invoices.

This module provides the InvoiceNinjaClient class used by the reconciliation
poller to fetch invoices that reached the "paid" status since the last poll.
"""

import logging
from datetime import datetime
from typing import Any, cast

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

PAID_STATUS_ID = 4
PAGE_SIZE = 100
MAX_PAGES = 20


class InvoiceNinjaClient:
    """
    Client for the Invoice Ninja v5 REST API.

    Only the read path needed for reconciliation is implemented.
    """

    def __init__(self, settings: Settings | None = None):
        """Initialize client with credentials from settings."""
        settings = settings or get_settings()
        # Remove trailing slash to avoid double slashes in URLs
        self.api_url = settings.INVOICE_NINJA_URL.rstrip("/")
        self.headers = {
            "X-Api-Token": settings.INVOICE_NINJA_API_TOKEN,
            "X-Requested-With": "XMLHttpRequest",
            "Accept": "application/json",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def _get_page(self, client: httpx.AsyncClient, updated_since: int, page: int) -> dict[str, Any]:
        response = await client.get(
            f"{self.api_url}/api/v1/invoices",
            params={
                "status_id": PAID_STATUS_ID,
                "updated_at": updated_since,
                "per_page": PAGE_SIZE,
                "page": page,
            },
            headers=self.headers,
            timeout=15.0,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    async def fetch_paid_invoices(self, since: datetime) -> list[dict[str, Any]]:
        """
        Fetch invoices in paid status updated since a moment.

        Args:
            since: Lower bound on the invoice's updated_at

        Returns:
            List of invoice dicts (bare shape, without a "data" wrapper)

        Raises:
            httpx.HTTPError: After retries are exhausted
        """
        updated_since = int(since.timestamp())
        invoices: list[dict[str, Any]] = []

        async with httpx.AsyncClient() as client:
            page = 1
            while page <= MAX_PAGES:
                body = await self._get_page(client, updated_since, page)
                invoices.extend(body.get("data") or [])

                pagination = (body.get("meta") or {}).get("pagination") or {}
                if page >= int(pagination.get("total_pages") or 1):
                    break
                page += 1

        logger.info(f"Fetched {len(invoices)} paid invoice(s) since {since.isoformat()}")
        return invoices
