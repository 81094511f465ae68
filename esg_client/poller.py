"""Fixed-interval polling loop that drives ``GamePhaseReconciler.refresh()``.

Each tick launches a refresh as its own task and goes back to sleep, so a
slow request never delays the next tick.  Overlapping refreshes are resolved
by the reconciler (newest result wins).
"""

import asyncio
import logging

from .config import POLL_INTERVAL
from .reconciler import GamePhaseReconciler

logger = logging.getLogger(__name__)

MAX_IN_FLIGHT = 5


class GamePoller:
    def __init__(self, reconciler: GamePhaseReconciler, interval: float = POLL_INTERVAL):
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.reconciler = reconciler
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _tick(self):
        if len(self._in_flight) >= MAX_IN_FLIGHT:
            logger.debug("Skipping tick: %d refreshes still in flight", len(self._in_flight))
            return
        self.ticks += 1
        task = asyncio.ensure_future(self.reconciler.refresh())
        self._in_flight.add(task)
        task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Task):
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Refresh failed: %s", exc, exc_info=exc)

    async def _poll_loop(self):
        while True:
            try:
                self._tick()
            except Exception:
                logger.exception("Polling tick failed")
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None:
            logger.info("Polling game state every %.1fs", self.interval)
            self._task = asyncio.ensure_future(self._poll_loop())

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        # In-flight refreshes are left to finish; their results are still applied.
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        logger.info("Polling stopped after %d ticks", self.ticks)
