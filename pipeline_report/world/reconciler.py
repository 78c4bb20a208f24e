"""
Optimization status reconciliation.

Two phases over the unique entities of a scan:

1. Bulk status: ask the fast inventory which entities have an optimized
   asset. If it cannot initialize, fall back to per-entity ``HEAD`` probes.
   Progress 0-50%.
2. Reports: fetch the per-entity optimization report for *every* entity,
   twenty at a time. A report with ``success == False`` forces the entity
   to not-optimized even when the asset file exists. Missing reports keep
   the phase-1 answer. Progress 50-100%.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

import httpx

from pipeline_report.retry import gather_in_batches, linear_backoff, request_with_retry
from pipeline_report.world.models import Entity, OptimizationReport

if TYPE_CHECKING:
    from collections.abc import Callable

    from pipeline_report.world.inventory import OptimizationInventory

logger = logging.getLogger(__name__)

REPORT_BATCH_SIZE = 20
REPORT_PAUSE = 0.05  # seconds between report batches
REPORT_MAX_ATTEMPTS = 2
REPORT_TIMEOUT = 10.0


class OptimizationReconciler:
    """Decide the final optimized/not-optimized status of scanned entities.

    Args:
        client: Shared async HTTP client
        inventory: Fast-path status source, tried first
        fallback: Status source used when the fast path cannot initialize
        report_url: Maps an entity id to its report URL
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        inventory: OptimizationInventory,
        fallback: OptimizationInventory,
        report_url: Callable[[str], str],
        report_batch_size: int = REPORT_BATCH_SIZE,
        report_pause: float = REPORT_PAUSE,
        timeout: float = REPORT_TIMEOUT,
        max_attempts: int = REPORT_MAX_ATTEMPTS,
    ) -> None:
        self.client = client
        self.inventory = inventory
        self.fallback = fallback
        self.report_url = report_url
        self.report_batch_size = report_batch_size
        self.report_pause = report_pause
        self.timeout = timeout
        self.max_attempts = max_attempts

    async def fetch_report(self, entity_id: str) -> OptimizationReport | None:
        """Fetch one report; None when absent or unreachable after retries."""
        try:
            response = await request_with_retry(
                self.client,
                "GET",
                self.report_url(entity_id),
                max_attempts=self.max_attempts,
                backoff=linear_backoff,
                timeout=self.timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.debug("Report fetch for %s failed: %s", entity_id, e)
            return None

        if response.status_code != 200 or not response.content:
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.debug("Report for %s is not valid JSON", entity_id)
            return None
        if not isinstance(payload, dict) or not payload:
            return None
        return OptimizationReport.from_payload(entity_id, payload)

    async def _bulk_status(
        self,
        entity_ids: list[str],
        on_progress: Callable[[float, str], None] | None,
    ) -> dict[str, bool]:
        try:
            await self.inventory.initialize()
            statuses = await self.inventory.check(entity_ids)
        except Exception as e:
            logger.warning(
                "%s unavailable (%s), falling back to %s",
                self.inventory.name,
                e,
                self.fallback.name,
            )
            if on_progress is not None:
                on_progress(0, f"Checking optimization status ({self.fallback.name})...")

            def _probe_progress(done: int, total: int) -> None:
                logger.info("Optimization check progress: %d/%d", done, total)
                if on_progress is not None:
                    on_progress(
                        done / total * 50,
                        f"Checking optimization: {done}/{total} scenes",
                    )

            await self.fallback.initialize()
            statuses = await self.fallback.check(entity_ids, _probe_progress)
            source = self.fallback.name
        else:
            source = self.inventory.name

        optimized = sum(statuses.values())
        logger.info(
            "Found %d entities with optimized assets (using %s)", optimized, source
        )
        if on_progress is not None:
            on_progress(50, f"Found {optimized} optimized scenes ({source})")
        return statuses

    async def reconcile(
        self,
        entities: list[Entity],
        on_progress: Callable[[float, str], None] | None = None,
    ) -> list[Entity]:
        """Attach final optimization status and reports to ``entities``.

        Duplicated ids are resolved once; every input entity receives the
        status of its id. The input objects are not modified.
        """
        unique: dict[str, Entity] = {}
        for entity in entities:
            unique.setdefault(entity.id, entity)
        entity_ids = list(unique)
        logger.info("Checking optimization status for %d entities", len(entity_ids))

        if not entity_ids:
            if on_progress is not None:
                on_progress(100, "No entities to reconcile")
            return []

        statuses = await self._bulk_status(entity_ids, on_progress)

        if on_progress is not None:
            on_progress(50, "Fetching optimization reports...")

        def _report_progress(done: int, total: int) -> None:
            logger.debug("Report check progress: %d/%d", done, total)
            if on_progress is not None:
                on_progress(
                    50 + done / total * 50,
                    f"Fetching reports: {done}/{total}",
                )

        fetched = await gather_in_batches(
            entity_ids,
            self.fetch_report,
            batch_size=self.report_batch_size,
            pause=self.report_pause,
            on_batch=_report_progress,
        )
        reports = dict(zip(entity_ids, fetched, strict=True))

        reports_found = 0
        failed_optimizations = 0
        for entity_id, report in reports.items():
            if report is None:
                continue
            reports_found += 1
            if not report.success:
                # The report is authoritative over the artifact.
                statuses[entity_id] = False
                failed_optimizations += 1

        logger.info(
            "Found %d optimization reports (%d marked as failed)",
            reports_found,
            failed_optimizations,
        )

        return [
            replace(
                entity,
                has_optimized_assets=statuses.get(entity.id, False),
                optimization_report=reports.get(entity.id),
            )
            for entity in entities
        ]
