"""One complete report generation run.

Progress milestones reported through ``on_progress(percent, message)``:

    5%   fetching world data (scan mapped onto 5-15%)
    15%  checking optimization status (reconcile mapped onto 15-85%)
    85%  processing world data
    88%  fetching worlds (world reconcile mapped onto 88-95%)
    95%  generating report

The caller (the scheduler or the CLI) marks 100% itself once the result
has been stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from pipeline_report.exceptions import WorldScanError
from pipeline_report.world.inventory import BucketListingInventory, HttpProbeInventory
from pipeline_report.world.processor import (
    build_report_data,
    compute_statistics,
    process_entities,
)
from pipeline_report.world.reconciler import OptimizationReconciler
from pipeline_report.world.scanner import WorldScanner
from pipeline_report.world.worlds import WorldsFetcher

if TYPE_CHECKING:
    from collections.abc import Callable

    from pipeline_report.settings import Settings
    from pipeline_report.world.worlds import WorldSummary

logger = logging.getLogger(__name__)


@dataclass
class ReportGenerationResult:
    """Outcome of :func:`run_report_generation`."""

    success: bool
    stats: dict[str, Any] = field(default_factory=dict)
    report_data: dict[str, Any] | None = None
    error: str | None = None
    failed_batches: int = 0
    generated_at: datetime | None = None
    worlds_stats: dict[str, Any] | None = None


def _scaled(
    on_progress: Callable[[float, str], None] | None, start: float, span: float
) -> Callable[[float, str], None] | None:
    if on_progress is None:
        return None

    def _report(percent: float, message: str) -> None:
        on_progress(start + percent * span / 100, message)

    return _report


async def _check_worlds(
    settings: Settings,
    client: httpx.AsyncClient,
    reconciler: OptimizationReconciler,
    on_progress: Callable[[float, str], None] | None,
) -> list[WorldSummary] | None:
    """Fetch and reconcile the worlds; None when the index is unavailable.

    An index failure is logged and the run continues without worlds.
    """
    fetcher = WorldsFetcher(client, index_url=settings.worlds_index_url)
    try:
        worlds = await fetcher.fetch()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Worlds unavailable, report will omit them: %s", e)
        return None
    return await fetcher.check_optimization(worlds, reconciler, on_progress)


async def _generate(
    settings: Settings,
    client: httpx.AsyncClient,
    on_progress: Callable[[float, str], None] | None,
    now: Callable[[], datetime],
) -> ReportGenerationResult:
    def progress(percent: float, message: str) -> None:
        logger.info("[%3.0f%%] %s", percent, message)
        if on_progress is not None:
            on_progress(percent, message)

    progress(5, "Fetching world data...")
    scanner = WorldScanner(
        client,
        api_url=settings.content_api_url,
        batch_size=settings.batch_size,
        min_coord=settings.min_coord,
        max_coord=settings.max_coord,
    )
    scan = await scanner.scan(on_progress=_scaled(on_progress, 5, 10))

    progress(15, "Checking optimization status...")
    reconciler = OptimizationReconciler(
        client,
        inventory=BucketListingInventory(
            client,
            listing_url=settings.bucket_listing_url,
            prefix=f"{settings.optimization_version}/",
        ),
        fallback=HttpProbeInventory(client, asset_url=settings.asset_url),
        report_url=settings.report_url,
    )
    entities = await reconciler.reconcile(
        scan.entities, on_progress=_scaled(on_progress, 15, 70)
    )

    progress(85, "Processing world data...")
    world = process_entities(entities, settings.min_coord, settings.max_coord)
    stats = compute_statistics(world)

    progress(88, "Fetching worlds...")
    worlds = await _check_worlds(settings, client, reconciler, _scaled(on_progress, 88, 7))

    progress(95, "Generating report...")
    generated_at = now()
    report_data = build_report_data(world, stats, generated_at, worlds)

    logger.info(
        "Report generated: %d scenes, %.1f%% optimized, %d failed batches",
        stats.total_scenes,
        stats.optimization_percentage,
        scan.failed_batches,
    )
    return ReportGenerationResult(
        success=True,
        stats=stats.to_dict(),
        report_data=report_data,
        failed_batches=scan.failed_batches,
        generated_at=generated_at,
        worlds_stats=report_data["ws"],
    )


async def run_report_generation(
    *,
    settings: Settings,
    client: httpx.AsyncClient | None = None,
    on_progress: Callable[[float, str], None] | None = None,
    now: Callable[[], datetime] | None = None,
) -> ReportGenerationResult:
    """Scan the world, reconcile optimization status and build the report.

    Never raises: any failure is logged and returned as ``success=False``
    with the error message, so the previous report stays in place.

    Args:
        settings: Resolved service settings
        client: Shared HTTP client; a private one is opened when omitted
        on_progress: Progress callback ``(percent, message)``
        now: Clock for the report timestamp
    """
    clock = now or (lambda: datetime.now(UTC))
    try:
        if client is not None:
            return await _generate(settings, client, on_progress, clock)
        async with httpx.AsyncClient(follow_redirects=True) as own_client:
            return await _generate(settings, own_client, on_progress, clock)
    except WorldScanError as e:
        logger.error("Report generation failed: %s", e)
        return ReportGenerationResult(
            success=False, error=str(e), failed_batches=e.failed_batches
        )
    except Exception as e:
        logger.exception("Report generation failed")
        return ReportGenerationResult(success=False, error=str(e))
