"""
Single-flight report generation scheduler.

At most one report generation runs at a time. The running flag is checked
and set without an ``await`` in between, so concurrent callers on the same
event loop cannot both pass the guard. A call made while a run is in
progress is a logged no-op: it is neither queued nor treated as an error.

Usage:
    scheduler = ReportScheduler(storage, settings=settings, history=history)
    await scheduler.start()      # periodic runs when enabled
    scheduler.spawn()            # manual background run
    await scheduler.stop()       # waits for the in-flight run
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pipeline_report.world.runner import ReportGenerationResult, run_report_generation

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

    from pipeline_report.monitoring.optimization_history import OptimizationHistoryStore
    from pipeline_report.report.storage import ReportStorage
    from pipeline_report.settings import Settings

    Runner = Callable[..., Awaitable[ReportGenerationResult]]

logger = logging.getLogger(__name__)


class ReportScheduler:
    """Run report generation periodically and on demand, one run at a time.

    Args:
        storage: Receives progress and the report of each successful run
        settings: Pipeline and schedule settings
        history: Optional store that gets one summary row per successful run
        client: Shared HTTP client passed to the runner
        runner: Report generation coroutine function
    """

    def __init__(
        self,
        storage: ReportStorage,
        *,
        settings: Settings,
        history: OptimizationHistoryStore | None = None,
        client: httpx.AsyncClient | None = None,
        runner: Runner = run_report_generation,
    ) -> None:
        self.storage = storage
        self.settings = settings
        self.history = history
        self.client = client
        self._runner = runner
        self._running = False
        self._current: asyncio.Task[ReportGenerationResult | None] | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_report(self) -> ReportGenerationResult | None:
        """Run one generation unless one is already in progress.

        Returns:
            The run result, or None when skipped because a run is active
        """
        if self._running:
            logger.info("Report generation already in progress, skipping")
            return None

        self._running = True
        logger.info("Starting report generation")
        self.storage.set_generating(True)
        try:
            result = await self._runner(
                settings=self.settings,
                client=self.client,
                on_progress=self.storage.set_progress,
            )
            if result.success:
                if result.report_data is not None:
                    self.storage.set_report(result.report_data)
                if self.history is not None and result.generated_at is not None:
                    await asyncio.to_thread(
                        self.history.record, result.generated_at, result.stats
                    )
                logger.info(
                    "Report generation completed: %s lands, %s scenes, %s%% optimized",
                    result.stats.get("totalLands"),
                    result.stats.get("totalScenes"),
                    result.stats.get("optimizationPercentage"),
                )
            else:
                logger.error(
                    "Report generation failed: %s", result.error or "Unknown error"
                )
            return result
        except Exception:
            logger.exception("Report generation raised")
            return None
        finally:
            self._running = False
            self.storage.set_generating(False)

    async def trigger(self) -> ReportGenerationResult | None:
        """Manual run, awaited to completion."""
        logger.info("Manual report trigger requested")
        return await self.run_report()

    def spawn(self) -> bool:
        """Start a run in the background.

        Returns:
            False when a run was already in progress and nothing was started
        """
        pending = self._current is not None and not self._current.done()
        if self._running or pending:
            logger.info("Report generation already in progress, skipping")
            return False
        self._current = asyncio.create_task(self.run_report())
        return True

    async def _periodic(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.spawn()

    async def start(self) -> None:
        if not self.settings.schedule_enabled:
            logger.info("Report scheduler disabled (REPORT_SCHEDULE_ENABLED is not set)")
            return

        interval_hours = self.settings.schedule_interval_hours
        logger.info("Report scheduler starting, every %s hours", interval_hours)
        if self.settings.run_on_startup:
            logger.info("Running initial report on startup")
            self.spawn()
        self._loop_task = asyncio.create_task(self._periodic(interval_hours * 3600))

    async def stop(self) -> None:
        logger.info("Report scheduler stopping")
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._current is not None and not self._current.done():
            logger.info("Waiting for current report to complete")
            await self._current
        self._current = None
        logger.info("Report scheduler stopped")
