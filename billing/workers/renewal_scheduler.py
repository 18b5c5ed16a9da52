"""Korner Billing Service - In-process subscription renewal scheduler.

Runs one renewal pass at startup, the next at local midnight and then every
24 hours. Started and stopped from the FastAPI lifespan.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from billing.services.renewal_service import RenewalReport, RenewalService

logger = logging.getLogger(__name__)

DAY = timedelta(hours=24)


def seconds_until_midnight(now: datetime | None = None) -> float:
    """Seconds from ``now`` (local time) to the next local midnight."""
    now = now or datetime.now()
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


class RenewalScheduler:
    """Asyncio task driving ``RenewalService.run_once``."""

    def __init__(self, service: RenewalService, interval: timedelta = DAY):
        self.service = service
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="subscription-renewal")
        logger.info("Subscription renewal scheduler started")

    async def stop(self) -> None:
        """Stop future passes and wait for a pass in flight to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Subscription renewal scheduler stopped")

    async def run_once(self) -> RenewalReport:
        """Run a single pass; passes never overlap within the process."""
        async with self._lock:
            return await self.service.run_once()

    async def _loop(self) -> None:
        await self._safe_pass()
        delay = seconds_until_midnight()
        while not self._stopping.is_set():
            next_run = datetime.now() + timedelta(seconds=delay)
            logger.info(f"Next subscription renewal check scheduled for: {next_run:%Y-%m-%d %H:%M:%S}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            await self._safe_pass()
            delay = self.interval.total_seconds()

    async def _safe_pass(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("Subscription renewal pass failed")
