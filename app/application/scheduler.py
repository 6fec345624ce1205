import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs ``job`` every ``interval`` seconds on the event loop.

    Polling is skipped while inactive (e.g. the terminal sits on an admin
    screen); ``tick`` runs a single cycle regardless.
    """

    def __init__(self, job: Callable[[], Awaitable], interval: Optional[float] = None):
        self.job = job
        self.interval = settings.SYNC_INTERVAL_SECONDS if interval is None else interval
        self.active = True
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_active(self, active: bool) -> None:
        self.active = active

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"⏱️ Sync scheduler started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")

    async def tick(self) -> None:
        self.ticks += 1
        try:
            await self.job()
        except Exception:
            # A broken cycle must not kill polling; the next tick retries
            logger.exception("Scheduled sync failed")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.active:
                await self.tick()
