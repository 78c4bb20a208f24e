"""One summary row per completed world scan, kept for 60 days."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select

from pipeline_report.monitoring.db import (
    isoformat,
    optimization_history_table,
    to_naive_utc,
    transaction,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

RETENTION = timedelta(days=60)
READ_WINDOW = timedelta(days=30)
READ_LIMIT = 60

# stats key -> column
_STAT_COLUMNS = {
    "totalLands": "total_lands",
    "occupiedLands": "occupied_lands",
    "totalScenes": "total_scenes",
    "scenesWithOptimizedAssets": "scenes_with_optimized",
    "scenesWithoutOptimizedAssets": "scenes_without_optimized",
    "optimizationPercentage": "optimization_percentage",
    "scenesWithReports": "scenes_with_reports",
    "successfulOptimizations": "successful_optimizations",
    "failedOptimizations": "failed_optimizations",
}


class OptimizationHistoryStore:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    def record(self, timestamp: datetime, stats: dict[str, Any]) -> None:
        """Insert one scan summary and drop summaries older than 60 days.

        Raises:
            KeyError: If ``stats`` lacks one of the summary counters
        """
        values: dict[str, Any] = {
            column: stats[key] for key, column in _STAT_COLUMNS.items()
        }
        now = self.clock()
        with transaction(self.engine) as conn:
            conn.execute(
                insert(optimization_history_table).values(
                    timestamp=to_naive_utc(timestamp), created_at=now, **values
                )
            )
            conn.execute(
                delete(optimization_history_table).where(
                    optimization_history_table.c.timestamp < now - RETENTION
                )
            )
        logger.info(
            "Recorded scan summary: %s%% optimized", stats["optimizationPercentage"]
        )

    def entries(self, now: datetime | None = None) -> list[dict[str, Any]]:
        """Summaries from the last 30 days, newest first."""
        since = (now or self.clock()) - READ_WINDOW
        query = (
            select(optimization_history_table)
            .where(optimization_history_table.c.timestamp > since)
            .order_by(optimization_history_table.c.timestamp.desc())
            .limit(READ_LIMIT)
        )
        with transaction(self.engine) as conn:
            rows = conn.execute(query).all()
        return [
            {
                "timestamp": isoformat(row.timestamp),
                "summary": {
                    key: getattr(row, column) for key, column in _STAT_COLUMNS.items()
                },
            }
            for row in rows
        ]
