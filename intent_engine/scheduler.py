"""
Intent Engine - Background Scheduler.

Runs the periodic passes (expiry sweep, CONFIRMING re-poll) as asyncio
tasks owned by the service lifecycle.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from .config import EngineConfig
from .reconciliation import ConfirmingRepoller
from .sweeper import ExpirySweeper


logger = logging.getLogger(__name__)


class BackgroundScheduler:
    """Interval loops for the sweeper and the re-poller."""

    def __init__(
        self,
        config: EngineConfig,
        sweeper: Optional[ExpirySweeper] = None,
        repoller: Optional[ConfirmingRepoller] = None,
    ):
        self._config = config
        self._sweeper = sweeper
        self._repoller = repoller
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        if self._sweeper is not None and self._config.sweeper.enabled:
            self._tasks["sweeper"] = asyncio.create_task(
                self._loop("sweeper", self._sweeper.run_once, self._config.sweeper.interval_seconds)
            )
        if self._repoller is not None and self._config.repoll.enabled:
            self._tasks["repoll"] = asyncio.create_task(
                self._loop("repoll", self._repoller.run_once, self._config.repoll.interval_seconds)
            )
        logger.info(f"Scheduler started: {sorted(self._tasks)}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        for name, task in self._tasks.items():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Scheduler stopped")

    async def _loop(
        self,
        name: str,
        run_once: Callable[[], Awaitable[object]],
        interval: float,
    ) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                if not self._running:
                    break
                await run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduled {name} pass failed: {e}")
