"""In-process cadence for the pump and the reaper.

Deployments that have cron call the ``/cron`` routes or ``relay pump`` /
``relay reap`` instead; this loop is for a single long-running worker.
"""

import asyncio
import logging

from relay_engine.common.config import RelaySettings
from relay_engine.deliveries.pump import Pump
from relay_engine.deliveries.reaper import Reaper

logger = logging.getLogger(__name__)


class Scheduler:
    """Runs ``pump`` and ``reap`` on their own intervals until stopped."""

    def __init__(self, settings: RelaySettings, pump: Pump, reaper: Reaper):
        self.settings = settings
        self.pump = pump
        self.reaper = reaper
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        logger.info(
            "Scheduler started",
            extra={
                "pump_interval": self.settings.pump_interval_seconds,
                "reaper_interval": self.settings.reaper_interval_seconds,
            },
        )
        await asyncio.gather(
            self._every(self.settings.pump_interval_seconds, self.pump.pump),
            self._every(self.settings.reaper_interval_seconds, self.reaper.reap),
        )
        logger.info("Scheduler stopped")

    async def _every(self, interval: float, job) -> None:
        while not self._stop.is_set():
            try:
                await job()
            except Exception:
                logger.exception("Scheduled job failed", extra={"job": job.__qualname__})
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
