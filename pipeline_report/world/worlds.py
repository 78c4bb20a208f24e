"""
Named worlds hosted outside the land grid.

The worlds content server publishes an index of every deployed world and
its scene. Each world scene goes through the same reconciliation as the
grid scenes: the inventory answers the provisional status and the
optimization report has the last word.

Index layout::

    {"data": [{"name": "example.dcl.eth",
               "scenes": [{"id": "bafk...", "title": "...",
                           "thumbnail": "https://...", "pointers": ["0,0"]}]}]}

A world without a scene is skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from pipeline_report.retry import exponential_backoff, request_with_retry
from pipeline_report.world.models import Entity, EntityKind, OptimizationReport

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from pipeline_report.world.reconciler import OptimizationReconciler

logger = logging.getLogger(__name__)

INDEX_TIMEOUT = 30.0
INDEX_MAX_ATTEMPTS = 3


@dataclass
class WorldSummary:
    """One deployed world and the optimization status of its scene."""

    name: str
    scene_id: str
    title: str = ""
    thumbnail: str = ""
    parcels: int = 0
    has_optimized_assets: bool = False
    optimization_report: OptimizationReport | None = None

    @property
    def has_failed(self) -> bool:
        return self.optimization_report is not None and not self.optimization_report.success

    @classmethod
    def from_payload(cls, payload: Any) -> WorldSummary | None:
        """Build a summary from one index entry; None when it has no usable scene."""
        if not isinstance(payload, dict) or not payload.get("name"):
            return None
        scenes = payload.get("scenes")
        if not isinstance(scenes, list) or not scenes or not isinstance(scenes[0], dict):
            return None
        scene = scenes[0]
        if not scene.get("id"):
            return None
        return cls(
            name=str(payload["name"]),
            scene_id=str(scene["id"]),
            title=scene.get("title") or "",
            thumbnail=scene.get("thumbnail") or "",
            parcels=len(scene.get("pointers") or []),
        )

    def to_entity(self) -> Entity:
        return Entity(id=self.scene_id, kind=EntityKind.scene)


class WorldsFetcher:
    """Fetch the worlds index and reconcile each world scene.

    Args:
        client: Shared async HTTP client
        index_url: Full URL of the worlds index endpoint
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        index_url: str,
        timeout: float = INDEX_TIMEOUT,
        max_attempts: int = INDEX_MAX_ATTEMPTS,
    ) -> None:
        self.client = client
        self.index_url = index_url
        self.timeout = timeout
        self.max_attempts = max_attempts

    async def fetch(self) -> list[WorldSummary]:
        """Return every world with a scene, in index order.

        Raises:
            httpx.HTTPError: When the index is unreachable or not a 2xx
            ValueError: When the body is not JSON
        """
        response = await request_with_retry(
            self.client,
            "GET",
            self.index_url,
            max_attempts=self.max_attempts,
            backoff=exponential_backoff,
            timeout=self.timeout,
            follow_redirects=True,
        )
        response.raise_for_status()
        payload = response.json()
        items = payload.get("data") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ValueError("Worlds index has no data list")

        worlds = []
        for item in items:
            world = WorldSummary.from_payload(item)
            if world is None:
                logger.debug("Skipping world entry without a scene: %r", item)
                continue
            worlds.append(world)
        logger.info("Fetched %d worlds (%d index entries)", len(worlds), len(items))
        return worlds

    async def check_optimization(
        self,
        worlds: list[WorldSummary],
        reconciler: OptimizationReconciler,
        on_progress: Callable[[float, str], None] | None = None,
    ) -> list[WorldSummary]:
        """Attach optimization status and reports to ``worlds``."""
        entities = await reconciler.reconcile(
            [world.to_entity() for world in worlds], on_progress=on_progress
        )
        checked = [
            replace(
                world,
                has_optimized_assets=entity.has_optimized_assets,
                optimization_report=entity.optimization_report,
            )
            for world, entity in zip(worlds, entities, strict=True)
        ]
        logger.info(
            "Worlds: %d optimized, %d failed of %d",
            sum(1 for world in checked if world.has_optimized_assets),
            sum(1 for world in checked if world.has_failed),
            len(checked),
        )
        return checked
