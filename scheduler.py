#!/usr/bin/env python3
"""
WallCraft - Ingestion Scheduler

Fires an ingestion cycle on a fixed wall-clock interval (every two hours
by default, aligned to the interval boundary) and offers a one-shot seed
for an empty catalog. At most one cycle runs at a time: a tick that
arrives while a cycle is still running is skipped, not queued.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from ingestion import IngestionOrchestrator
from pipeline_robustness import ErrorCategory, WallcraftError

logger = logging.getLogger("wallcraft")


# asyncio.sleep runs on the monotonic clock and can wake just short of a
# wall-clock boundary; a remaining delay below this belongs to the tick just fired
MIN_TICK_GAP_SEC = 1.0


def seconds_until_next_tick(interval_sec: float, now: Optional[float] = None) -> float:
    """Seconds from now to the next multiple of interval_sec since the epoch."""
    now = time.time() if now is None else now
    delay = interval_sec - (now % interval_sec)
    if delay < MIN_TICK_GAP_SEC:
        delay += interval_sec
    return delay


class IngestionScheduler:
    """
    Background timer around an IngestionOrchestrator.

    Lifecycle:
    - start() launches the timer task (and an optional startup seed)
    - stop() cancels the timer and waits for a running cycle to finish
    """

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        interval_minutes: float = 120,
        seed_on_startup: bool = True,
    ):
        self.orchestrator = orchestrator
        self.interval_sec = interval_minutes * 60
        self.seed_on_startup = seed_on_startup
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._running = False
        self._stats: dict[str, Any] = {
            "cycles_run": 0,
            "cycles_failed": 0,
            "ticks_skipped": 0,
            "last_run_at": None,
            "last_result": None,
        }

    @property
    def is_busy(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    async def _run_guarded(self, job: Callable[[], Awaitable[int]], label: str) -> Optional[int]:
        """Run a job, logging any failure instead of letting it escape."""
        try:
            result = await job()
            self._stats["cycles_run"] += 1
            self._stats["last_result"] = result
            return result
        except WallcraftError as e:
            # Next tick retries; the hosting process must keep running
            self._stats["cycles_failed"] += 1
            level = logging.ERROR if e.category is ErrorCategory.FATAL else logging.WARNING
            logger.log(level, f"{label} failed: {e}")
            return None
        except Exception as e:
            self._stats["cycles_failed"] += 1
            logger.exception(f"{label} crashed: {e}")
            return None
        finally:
            self._stats["last_run_at"] = datetime.now().isoformat()

    def _launch(self, job: Callable[[], Awaitable[int]], label: str) -> Optional[asyncio.Task]:
        """Start a job unless one is already running."""
        if self.is_busy:
            self._stats["ticks_skipped"] += 1
            logger.warning(f"{label} skipped: previous cycle still running")
            return None
        self._cycle_task = asyncio.create_task(self._run_guarded(job, label))
        return self._cycle_task

    def request_cycle(self) -> bool:
        """Start a cycle in the background. Returns False if one is already running."""
        return self._launch(self.orchestrator.run_cycle, "Manual fetch cycle") is not None

    async def trigger_now(self) -> Optional[int]:
        """Run one cycle immediately. Returns None if a cycle was already running."""
        task = self._launch(self.orchestrator.run_cycle, "Manual fetch cycle")
        return await task if task else None

    async def seed_now(self) -> Optional[int]:
        """Featured fetch plus one cycle, for populating an empty catalog."""
        task = self._launch(self.orchestrator.seed, "Catalog seed")
        return await task if task else None

    async def _timer_loop(self) -> None:
        while self._running:
            delay = seconds_until_next_tick(self.interval_sec)
            logger.debug(f"Next scheduled fetch in {delay:.0f}s")
            await asyncio.sleep(delay)
            if not self._running:
                break
            logger.info("Scheduled wallpaper fetch starting...")
            self._launch(self.orchestrator.run_cycle, "Scheduled fetch cycle")

    def start(self) -> None:
        """Start the timer; seeds the catalog first if configured and it is empty."""
        if self._running:
            return
        self._running = True

        logger.info(f"Starting scheduler (every {self.interval_sec / 60:.0f} minutes)")

        if self.seed_on_startup and self.orchestrator.store.count_wallpapers() == 0:
            logger.info("Catalog is empty, seeding now")
            self._launch(self.orchestrator.seed, "Catalog seed")

        self._timer_task = asyncio.create_task(self._timer_loop())

    async def stop(self) -> None:
        """Stop the timer and let a running cycle finish."""
        self._running = False
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        if self.is_busy:
            logger.info("Waiting for running cycle to finish...")
            await self._cycle_task
        logger.info("Scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        report = self.orchestrator.last_report
        return {
            **self._stats,
            "last_report": report.to_dict() if report else None,
            "running": self._running,
            "busy": self.is_busy,
            "interval_sec": self.interval_sec,
        }
