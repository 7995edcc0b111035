"""
Periodic worker loop shared by the background workers.

Each worker sleeps for a startup delay (lets the database and the API come
up), then calls run_once() every interval. An exception in one cycle is
logged and the loop carries on; cancellation stops the loop cleanly.
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """Base class; subclasses implement run_once()."""

    name = "worker"

    def __init__(self, interval_seconds: int, startup_delay_seconds: int = 0):
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds

    async def run_once(self, now=None) -> Any:
        raise NotImplementedError

    async def run_forever(self) -> None:
        """
        Main worker loop - runs run_once() every interval_seconds.

        Runs until cancelled.
        """
        logger.info(
            f"{self.name} starting (delay={self.startup_delay_seconds}s, "
            f"interval={self.interval_seconds}s)",
            extra={"worker": self.name},
        )

        try:
            await asyncio.sleep(self.startup_delay_seconds)
            while True:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.exception(f"Error in {self.name} cycle: {e}", extra={"worker": self.name})

                await asyncio.sleep(self.interval_seconds)

        except asyncio.CancelledError:
            logger.info(f"{self.name} shutting down...", extra={"worker": self.name})
            raise
