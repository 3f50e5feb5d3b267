"""Periodic background refresh tied to an active session."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

JOB_ID = "habitsync_refresh"


class RefreshScheduler:
    """Runs ``refresh`` immediately on activation and then every ``interval`` seconds.

    Refresh failures are logged and swallowed so one bad attempt never stops
    the schedule. Use ``async with`` to guarantee teardown on every exit path.
    """

    def __init__(self, refresh: Callable[[], Awaitable[object]], interval: float) -> None:
        """Initialize the scheduler.

        Args:
            refresh: Coroutine function performing one full refresh
            interval: Seconds between scheduled refreshes
        """
        if interval <= 0:
            raise ValueError("Refresh interval must be positive")
        self.refresh = refresh
        self.interval = interval
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.runs = 0

    @property
    def active(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def activate(self) -> None:
        """Refresh now, then start the interval job on the running event loop."""
        if self.active:
            logger.warning("Refresh scheduler already running")
            return

        await self._run_refresh()

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            func=self._run_refresh,
            trigger=IntervalTrigger(seconds=self.interval),
            id=JOB_ID,
            name="Background refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Background refresh scheduled every %ss", self.interval)

    def deactivate(self) -> None:
        """Stop the interval job. Safe to call when not active."""
        scheduler, self.scheduler = self.scheduler, None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Background refresh stopped")

    async def _run_refresh(self) -> None:
        self.runs += 1
        try:
            await self.refresh()
        except Exception as exc:
            logger.error(f"Background refresh failed: {exc}", exc_info=True)

    async def __aenter__(self) -> "RefreshScheduler":
        await self.activate()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.deactivate()


__all__ = ["RefreshScheduler"]
