"""Land grid assembly, coverage statistics and the compact report blob."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pipeline_report.world.models import EntityKind, Land, parse_pointer

if TYPE_CHECKING:
    from pipeline_report.world.models import Entity
    from pipeline_report.world.worlds import WorldSummary

logger = logging.getLogger(__name__)

COLOR_PALETTE_SIZE = 12


@dataclass
class WorldData:
    """Every land of the grid plus the scenes that occupy them."""

    lands: list[Land]
    scenes: dict[str, Entity]


@dataclass
class WorldStatistics:
    total_lands: int
    occupied_lands: int
    empty_lands: int
    total_scenes: int
    average_lands_per_scene: float
    scenes_with_optimized_assets: int
    scenes_without_optimized_assets: int
    scenes_with_reports: int
    successful_optimizations: int
    failed_optimizations: int
    optimization_percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalLands": self.total_lands,
            "occupiedLands": self.occupied_lands,
            "emptyLands": self.empty_lands,
            "totalScenes": self.total_scenes,
            "averageLandsPerScene": self.average_lands_per_scene,
            "scenesWithOptimizedAssets": self.scenes_with_optimized_assets,
            "scenesWithoutOptimizedAssets": self.scenes_without_optimized_assets,
            "scenesWithReports": self.scenes_with_reports,
            "successfulOptimizations": self.successful_optimizations,
            "failedOptimizations": self.failed_optimizations,
            "optimizationPercentage": self.optimization_percentage,
        }


@dataclass
class WorldsStatistics:
    total_worlds: int
    optimized_worlds: int
    not_optimized_worlds: int
    failed_worlds: int
    optimization_percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalWorlds": self.total_worlds,
            "optimizedWorlds": self.optimized_worlds,
            "notOptimizedWorlds": self.not_optimized_worlds,
            "failedWorlds": self.failed_worlds,
            "optimizationPercentage": self.optimization_percentage,
        }


def process_entities(
    entities: list[Entity], min_coord: int, max_coord: int
) -> WorldData:
    """Map scenes onto the full land grid.

    Pointers outside the grid or not of the ``x,y`` form are ignored.
    When two scenes claim the same land the later one wins.
    """
    side = max_coord - min_coord + 1
    lands = [
        Land(x=x, y=y)
        for x in range(min_coord, max_coord + 1)
        for y in range(min_coord, max_coord + 1)
    ]
    scenes: dict[str, Entity] = {}

    for entity in entities:
        if entity.kind is not EntityKind.scene:
            continue
        scenes[entity.id] = entity
        for pointer in entity.pointers:
            coords = parse_pointer(pointer)
            if coords is None:
                continue
            x, y = coords
            if not (min_coord <= x <= max_coord and min_coord <= y <= max_coord):
                continue
            land = lands[(x - min_coord) * side + (y - min_coord)]
            land.scene_id = entity.id
            land.has_optimized_assets = entity.has_optimized_assets
            land.optimization_report = entity.optimization_report

    return WorldData(lands=lands, scenes=scenes)


def compute_statistics(world: WorldData) -> WorldStatistics:
    total_lands = len(world.lands)
    occupied = sum(1 for land in world.lands if not land.is_empty)
    occupying_scenes = {land.scene_id for land in world.lands if land.scene_id}
    scenes = [world.scenes[scene_id] for scene_id in occupying_scenes]

    with_optimized = sum(1 for scene in scenes if scene.has_optimized_assets)
    reports = [scene.optimization_report for scene in scenes if scene.optimization_report]
    successful = sum(1 for report in reports if report.success)
    total_scenes = len(scenes)

    return WorldStatistics(
        total_lands=total_lands,
        occupied_lands=occupied,
        empty_lands=total_lands - occupied,
        total_scenes=total_scenes,
        average_lands_per_scene=occupied / total_scenes if total_scenes else 0.0,
        scenes_with_optimized_assets=with_optimized,
        scenes_without_optimized_assets=total_scenes - with_optimized,
        scenes_with_reports=len(reports),
        successful_optimizations=successful,
        failed_optimizations=len(reports) - successful,
        optimization_percentage=(
            with_optimized / total_scenes * 100 if total_scenes else 0.0
        ),
    )


def compute_worlds_statistics(worlds: list[WorldSummary]) -> WorldsStatistics:
    total = len(worlds)
    optimized = sum(1 for world in worlds if world.has_optimized_assets)
    return WorldsStatistics(
        total_worlds=total,
        optimized_worlds=optimized,
        not_optimized_worlds=total - optimized,
        failed_worlds=sum(1 for world in worlds if world.has_failed),
        optimization_percentage=optimized / total * 100 if total else 0.0,
    )


def _compress_world(world: WorldSummary) -> list[Any]:
    row: list[Any] = [
        world.name,
        world.scene_id,
        world.title,
        world.thumbnail,
        world.parcels,
        1 if world.has_optimized_assets else 0,
    ]
    if world.optimization_report is not None:
        row.append(1 if world.has_failed else 0)
    return row


def build_report_data(
    world: WorldData,
    stats: WorldStatistics,
    generated_at: datetime,
    worlds: list[WorldSummary] | None = None,
) -> dict[str, Any]:
    """Compact report blob served to the dashboard.

    ``l`` holds occupied lands as ``[x, y, sceneId, hasOptimized]`` with a
    trailing ``reportSuccess`` flag when a report exists; ``c`` maps each
    scene to a colour index assigned in order of first appearance.

    ``w`` holds worlds as ``[name, sceneId, title, thumbnail, parcels,
    hasOptimized]`` with a trailing ``hasFailed`` flag when a report exists,
    and ``ws`` their statistics. ``worlds=None`` means the worlds step did
    not run: ``w`` is empty and ``ws`` is null.
    """
    lands: list[list[Any]] = []
    colors: dict[str, int] = {}
    for land in world.lands:
        if land.scene_id is None:
            continue
        if land.scene_id not in colors:
            colors[land.scene_id] = len(colors) % COLOR_PALETTE_SIZE
        row: list[Any] = [
            land.x,
            land.y,
            land.scene_id,
            1 if land.has_optimized_assets else 0,
        ]
        if land.optimization_report is not None:
            row.append(1 if land.optimization_report.success else 0)
        lands.append(row)

    logger.debug(
        "Report blob: %d occupied lands, %d scenes, %d worlds",
        len(lands),
        len(colors),
        len(worlds or []),
    )
    return {
        "l": lands,
        "s": stats.to_dict(),
        "c": colors,
        "g": int(generated_at.timestamp() * 1000),
        "w": [_compress_world(w) for w in worlds or []],
        "ws": compute_worlds_statistics(worlds).to_dict() if worlds is not None else None,
    }
