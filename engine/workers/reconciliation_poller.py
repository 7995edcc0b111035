"""
Reconciliation Poller - Pulls paid invoices from Invoice Ninja.

Covers payments whose webhook never arrived. Runs every 5 minutes (15s after
startup) when RECONCILIATION_ENABLED is set and Invoice Ninja is configured.
The first poll looks back RECONCILIATION_LOOKBACK_HOURS to recover from
downtime; later polls start where the previous one ended.

Poll-path matching does not filter by billing period: invoices may be issued
in a different month than the move.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import pybreaker

from engine.services.reconciliation_service import ReconciliationService
from engine.workers.periodic import PeriodicWorker
from shared.circuit_breaker import call_with_breaker, invoice_ninja_breaker

logger = logging.getLogger(__name__)


class InvoiceSource(Protocol):
    async def fetch_paid_invoices(self, since: datetime) -> list[dict[str, Any]]: ...


class ReconciliationPoller(PeriodicWorker):
    name = "reconciliation_poller"

    def __init__(
        self,
        reconciliation: ReconciliationService,
        source: InvoiceSource | None,
        enabled: bool = False,
        lookback_hours: int = 24,
        interval_seconds: int = 300,
        startup_delay_seconds: int = 15,
    ):
        super().__init__(interval_seconds, startup_delay_seconds)
        self.reconciliation = reconciliation
        self.source = source
        self.enabled = enabled
        self.lookback = timedelta(hours=lookback_hours)
        self.last_poll_at: datetime | None = None

    async def run_once(self, now: datetime | None = None) -> int:
        """
        Poll once and ingest every returned invoice.

        Returns:
            int: Number of invoices that matched a booking
        """
        if not self.enabled or self.source is None:
            logger.debug("Reconciliation polling disabled", extra={"worker": self.name})
            return 0

        now = now or datetime.now(UTC)
        since = self.last_poll_at or (now - self.lookback)

        try:
            invoices = await call_with_breaker(invoice_ninja_breaker, self.source.fetch_paid_invoices, since)
        except pybreaker.CircuitBreakerError:
            logger.warning("Invoice Ninja circuit open, skipping poll", extra={"worker": self.name})
            return 0
        except Exception as e:
            logger.error(f"Invoice Ninja poll failed: {e}", extra={"worker": self.name}, exc_info=True)
            return 0

        # Only advance the window once the fetch succeeded
        self.last_poll_at = now

        matched_count = 0
        for invoice in invoices:
            try:
                result = await self.reconciliation.ingest_event(invoice, match_billing_period=False)
            except Exception as e:
                logger.error(
                    f"Invoice ingestion failed, continuing poll: {type(e).__name__}: {e}",
                    extra={"worker": self.name},
                    exc_info=True,
                )
                continue
            if result.matched:
                matched_count += 1

        logger.info(
            f"Poll completed | invoices={len(invoices)} | matched={matched_count}",
            extra={"worker": self.name},
        )
        return matched_count


if __name__ == "__main__":
    from engine.container import build_engine
    from shared.logging_config import configure_logging

    async def _main() -> None:
        engine = await build_engine()
        await engine.poller.run_forever()

    configure_logging()
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Reconciliation poller stopped by user")
