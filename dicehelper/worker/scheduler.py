"""Fixed-interval cycle scheduler with a single-flight guard.

Runs the poll cycle from an APScheduler interval job.  At most one cycle is
in flight per process: a tick that fires while the previous cycle is still
running (slow dice sends, slow store) is skipped and counted rather than
stacked up against the connection pool.

Shutdown is cooperative.  ``stop()`` cancels the token; the scheduler stops
issuing ticks, and the in-flight cycle observes the token at its next row
boundary and finishes.  The in-flight cycle is shielded from APScheduler's
executor shutdown, which would otherwise cancel it mid-send.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dicehelper.utils.cancel import CancellationToken
from dicehelper.utils.metrics import record_tick_skipped

logger = logging.getLogger("dicehelper.worker.scheduler")

CYCLE_JOB_ID = "dice-poll-cycle"

CycleFn = Callable[[CancellationToken], Awaitable[Any]]


class CycleScheduler:
    """Thin asyncio wrapper around APScheduler's AsyncIOScheduler."""

    def __init__(
        self,
        cycle: CycleFn,
        interval_seconds: float,
        token: CancellationToken | None = None,
    ) -> None:
        self._cycle = cycle
        self.interval_seconds = interval_seconds
        self.token = token or CancellationToken()
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._inflight: asyncio.Future[Any] | None = None
        self.ticks_run = 0
        self.ticks_skipped = 0

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self) -> None:
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=CYCLE_JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )
        self._scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        self._scheduler.start()
        logger.info("CycleScheduler started (interval=%.3fs)", self.interval_seconds)

    def stop(self, reason: str = "shutdown requested") -> None:
        self.token.cancel(reason)

    async def run(self) -> None:
        """Tick until the token is cancelled, then drain the in-flight cycle."""
        self.start()
        try:
            await self.token.wait()
        finally:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            logger.info("CycleScheduler stopped issuing cycles (%s)", self.token.reason)
            await self.drain()

    async def drain(self) -> None:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            logger.info("Waiting for in-flight cycle to finish")
            await asyncio.gather(inflight, return_exceptions=True)

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ── Ticks ───────────────────────────────────────────────────

    async def tick(self) -> None:
        """Start one cycle unless one is already in flight or we are stopping."""
        if self.token.cancelled:
            return
        if self.busy:
            self._skip("previous cycle still running")
            return
        self.ticks_run += 1
        self._inflight = asyncio.ensure_future(self._guarded_cycle())
        await asyncio.shield(self._inflight)

    async def _guarded_cycle(self) -> None:
        try:
            await self._cycle(self.token)
        except Exception:
            logger.exception("Uncaught error in poll cycle")

    def _skip(self, why: str) -> None:
        self.ticks_skipped += 1
        record_tick_skipped()
        logger.debug("Skipping tick: %s", why)

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        if event.job_id == CYCLE_JOB_ID:
            self._skip("max instances reached")
