"""
World scan over the content server's active-entities endpoint.

The coordinate square is partitioned into square sub-grids whose side is
``floor(sqrt(batch_size))``. Each sub-grid becomes one POST of land
pointers, retried on timeouts and 5xx responses with exponential backoff.
Sub-grids are fetched sequentially with a short pause between requests to
stay under the upstream rate limit.

A sub-grid that still fails after its retry budget is skipped and counted;
the scan only fails when no sub-grid succeeded at all.

Usage:
    async with httpx.AsyncClient(follow_redirects=True) as client:
        scanner = WorldScanner(client, api_url=settings.content_api_url)
        result = await scanner.scan(on_progress=callback)
        print(len(result.entities), result.failed_batches)
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any

from pipeline_report.exceptions import WorldScanError
from pipeline_report.retry import exponential_backoff, request_with_retry
from pipeline_report.world.models import Entity, ScanResult, SubGrid

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    import httpx

logger = logging.getLogger(__name__)

MIN_COORD = -175
MAX_COORD = 175
BATCH_MAX_ATTEMPTS = 3
BATCH_TIMEOUT = 120.0  # seconds
REQUEST_DELAY = 0.2  # seconds between sub-grid requests


class WorldScanner:
    """Fetch every active entity on the land grid, one sub-grid at a time."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str,
        batch_size: int = 50_000,
        min_coord: int = MIN_COORD,
        max_coord: int = MAX_COORD,
        request_delay: float = REQUEST_DELAY,
        timeout: float = BATCH_TIMEOUT,
        max_attempts: int = BATCH_MAX_ATTEMPTS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if min_coord > max_coord:
            raise ValueError("min_coord must not exceed max_coord")
        self.client = client
        self.api_url = api_url
        self.batch_size = batch_size
        self.min_coord = min_coord
        self.max_coord = max_coord
        self.request_delay = request_delay
        self.timeout = timeout
        self.max_attempts = max_attempts

    @property
    def grid_size(self) -> int:
        """Side length of one sub-grid."""
        return max(1, math.isqrt(self.batch_size))

    @property
    def total_cells(self) -> int:
        side = self.max_coord - self.min_coord + 1
        return side * side

    @staticmethod
    def generate_pointers(
        start_x: int, end_x: int, start_y: int, end_y: int
    ) -> list[str]:
        """Inclusive ``"x,y"`` pointers for a rectangle, X-major."""
        return [
            f"{x},{y}"
            for x in range(start_x, end_x + 1)
            for y in range(start_y, end_y + 1)
        ]

    def iter_subgrids(self) -> Iterator[SubGrid]:
        """Yield sub-grids covering the square, clamped at the upper bound."""
        step = self.grid_size
        for start_x in range(self.min_coord, self.max_coord + 1, step):
            for start_y in range(self.min_coord, self.max_coord + 1, step):
                yield SubGrid(
                    start_x=start_x,
                    end_x=min(start_x + step - 1, self.max_coord),
                    start_y=start_y,
                    end_y=min(start_y + step - 1, self.max_coord),
                )

    async def fetch_batch(self, pointers: list[str]) -> list[dict[str, Any]]:
        """POST one batch of pointers, retrying transient failures."""
        logger.debug("Fetching batch of %d pointers", len(pointers))
        response = await request_with_retry(
            self.client,
            "POST",
            self.api_url,
            json={"pointers": pointers},
            headers={"Content-Type": "application/json"},
            max_attempts=self.max_attempts,
            backoff=exponential_backoff,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise ValueError(f"Unexpected payload type {type(data).__name__}")
        return data

    async def scan(
        self, on_progress: Callable[[float, str], None] | None = None
    ) -> ScanResult:
        """Scan the whole grid.

        Args:
            on_progress: Called after each sub-grid with
                ``(cells_processed / total_cells * 100, message)``

        Returns:
            Union of entities from every successful sub-grid

        Raises:
            WorldScanError: If not a single sub-grid could be fetched
        """
        total_cells = self.total_cells
        logger.info(
            "Scanning %d lands in sub-grids of %dx%d",
            total_cells,
            self.grid_size,
            self.grid_size,
        )

        entities: list[Entity] = []
        successful = 0
        failed = 0
        processed_cells = 0

        for subgrid in self.iter_subgrids():
            pointers = self.generate_pointers(
                subgrid.start_x, subgrid.end_x, subgrid.start_y, subgrid.end_y
            )
            try:
                payload = await self.fetch_batch(pointers)
            except Exception as e:
                failed += 1
                logger.error(
                    "Failed to fetch region (%d,%d) to (%d,%d) after retries: %s",
                    subgrid.start_x,
                    subgrid.start_y,
                    subgrid.end_x,
                    subgrid.end_y,
                    e,
                )
            else:
                successful += 1
                for item in payload:
                    if not isinstance(item, dict):
                        logger.debug("Skipping non-object entity payload: %r", item)
                        continue
                    try:
                        entities.append(Entity.from_payload(item))
                    except (KeyError, TypeError):
                        logger.debug("Skipping malformed entity payload: %r", item)

            processed_cells += subgrid.cell_count
            percent = processed_cells / total_cells * 100
            logger.info(
                "Progress: %.2f%% - Success: %d, Failed: %d",
                percent,
                successful,
                failed,
            )
            if on_progress is not None:
                on_progress(
                    percent,
                    f"Fetched {processed_cells}/{total_cells} lands "
                    f"({failed} failed batches)",
                )

            if self.request_delay:
                await asyncio.sleep(self.request_delay)

        logger.info(
            "Fetched %d entities from %d successful batches (%d failed)",
            len(entities),
            successful,
            failed,
        )
        if successful == 0:
            raise WorldScanError("Failed to fetch any world data", failed_batches=failed)

        return ScanResult(
            entities=entities, successful_batches=successful, failed_batches=failed
        )
