"""Data model for world scans and optimization reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityKind(str, Enum):
    """Kinds of content entity that go through the optimization pipeline."""

    scene = "scene"
    wearable = "wearable"
    emote = "emote"


@dataclass
class OptimizationReport:
    """Authoritative outcome of one optimization job.

    Produced by the optimization worker and only ever read here.
    """

    entity_id: str
    success: bool
    fatal_error: bool = False
    timestamp: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, entity_id: str, payload: dict[str, Any]) -> OptimizationReport:
        """Build a report from the JSON document stored next to the asset.

        Handles both layouts: ``result.success`` (current) and top-level
        ``success`` (older reports).
        """
        result = payload.get("result")
        success = None
        if isinstance(result, dict):
            success = result.get("success")
        if success is None:
            success = payload.get("success")
        errors = payload.get("errors") or []
        return cls(
            entity_id=entity_id,
            success=bool(success),
            fatal_error=bool(payload.get("fatalError", False)),
            timestamp=payload.get("finishedAt") or payload.get("timestamp"),
            error=errors[0] if errors else payload.get("error"),
            details=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sceneId": self.entity_id,
            "success": self.success,
            "fatalError": self.fatal_error,
            "timestamp": self.timestamp,
            "error": self.error,
            "details": self.details,
        }


@dataclass
class Entity:
    """An active entity returned by the content server."""

    id: str
    kind: EntityKind = EntityKind.scene
    pointers: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    has_optimized_assets: bool = False
    optimization_report: OptimizationReport | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Entity:
        try:
            kind = EntityKind(payload.get("type", "scene"))
        except ValueError:
            kind = EntityKind.scene
        return cls(
            id=payload["id"],
            kind=kind,
            pointers=list(payload.get("pointers") or []),
            metadata=payload.get("metadata") or {},
        )


@dataclass(frozen=True)
class SubGrid:
    """Inclusive rectangular region of land coordinates."""

    start_x: int
    end_x: int
    start_y: int
    end_y: int

    @property
    def cell_count(self) -> int:
        return (self.end_x - self.start_x + 1) * (self.end_y - self.start_y + 1)


@dataclass
class ScanResult:
    """Entities gathered by a world scan plus batch accounting."""

    entities: list[Entity]
    successful_batches: int
    failed_batches: int


@dataclass
class Land:
    """One grid coordinate, optionally occupied by a scene."""

    x: int
    y: int
    scene_id: str | None = None
    has_optimized_assets: bool = False
    optimization_report: OptimizationReport | None = None

    @property
    def is_empty(self) -> bool:
        return self.scene_id is None


def parse_pointer(pointer: str) -> tuple[int, int] | None:
    """Parse an ``"x,y"`` land pointer; None for anything else."""
    parts = pointer.split(",")
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None
