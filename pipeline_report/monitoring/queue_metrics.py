"""
Queue depth sampling with per-type retention and bucketed history.

Samples are append-only. After each insert only the 15 000 most recent
samples of every entity type are kept, roughly ten days at one sample per
minute.

History reads group samples into fixed, epoch-aligned buckets whose width
depends on the requested range, and keep the most recent sample per bucket.
Aligned buckets give a polling dashboard stable boundaries between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, insert, select

from pipeline_report.monitoring.db import (
    isoformat,
    queue_metrics_table,
    transaction,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_TYPE = 15_000
ENTITY_TYPES = ("scene", "wearable", "emote")
DEFAULT_RANGE = "7d"

# range -> (window, bucket width)
SAMPLING: dict[str, tuple[timedelta, timedelta]] = {
    "1h": (timedelta(hours=1), timedelta(minutes=5)),
    "3h": (timedelta(hours=3), timedelta(minutes=5)),
    "6h": (timedelta(hours=6), timedelta(minutes=5)),
    "12h": (timedelta(hours=12), timedelta(minutes=10)),
    "24h": (timedelta(hours=24), timedelta(minutes=20)),
    "3d": (timedelta(days=3), timedelta(minutes=60)),
    "7d": (timedelta(days=7), timedelta(minutes=120)),
}

_EPOCH = datetime(1970, 1, 1)


def sampling_for(range_: str) -> tuple[timedelta, timedelta]:
    """Window and bucket width for a range; unknown ranges use 7d."""
    return SAMPLING.get(range_, SAMPLING[DEFAULT_RANGE])


@dataclass
class QueueStatus:
    queue_depth: int
    last_updated: datetime
    entity_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "queueDepth": self.queue_depth,
            "lastUpdated": isoformat(self.last_updated),
            "entityType": self.entity_type,
        }


@dataclass
class QueueHistoryPoint:
    queue_depth: int
    timestamp: datetime
    entity_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "queueDepth": self.queue_depth,
            "timestamp": isoformat(self.timestamp),
            "entityType": self.entity_type,
        }


class QueueMetricsSampler:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    def record_sample(self, entity_type: str, queue_depth: int) -> None:
        """Store a sample stamped with the server clock, then enforce the cap."""
        with transaction(self.engine) as conn:
            conn.execute(
                insert(queue_metrics_table).values(
                    timestamp=self.clock(),
                    queue_depth=queue_depth,
                    entity_type=entity_type,
                )
            )
        self.enforce_cap()

    def enforce_cap(self, max_samples: int = MAX_SAMPLES_PER_TYPE) -> int:
        """Delete all but the ``max_samples`` most recent samples of each type."""
        ranked = select(
            queue_metrics_table.c.id,
            func.row_number()
            .over(
                partition_by=queue_metrics_table.c.entity_type,
                order_by=(
                    queue_metrics_table.c.timestamp.desc(),
                    queue_metrics_table.c.id.desc(),
                ),
            )
            .label("rn"),
        ).subquery()
        overflow = select(ranked.c.id).where(ranked.c.rn > max_samples)
        with transaction(self.engine) as conn:
            deleted = conn.execute(
                delete(queue_metrics_table).where(queue_metrics_table.c.id.in_(overflow))
            ).rowcount
        if deleted:
            logger.debug("Trimmed %d queue samples over the per-type cap", deleted)
        return deleted

    def latest(self, entity_type: str) -> QueueStatus | None:
        query = (
            select(queue_metrics_table)
            .where(queue_metrics_table.c.entity_type == entity_type)
            .order_by(
                queue_metrics_table.c.timestamp.desc(),
                queue_metrics_table.c.id.desc(),
            )
            .limit(1)
        )
        with transaction(self.engine) as conn:
            row = conn.execute(query).first()
        if row is None:
            return None
        return QueueStatus(
            queue_depth=row.queue_depth,
            last_updated=row.timestamp,
            entity_type=row.entity_type,
        )

    def history(
        self, entity_type: str, range_: str = "24h", now: datetime | None = None
    ) -> list[QueueHistoryPoint]:
        """Most recent sample per aligned bucket within the range, oldest first."""
        window, bucket = sampling_for(range_)
        since = (now or self.clock()) - window
        query = (
            select(queue_metrics_table)
            .where(
                queue_metrics_table.c.entity_type == entity_type,
                queue_metrics_table.c.timestamp > since,
            )
            .order_by(
                queue_metrics_table.c.timestamp.asc(),
                queue_metrics_table.c.id.asc(),
            )
        )
        with transaction(self.engine) as conn:
            rows = conn.execute(query).all()

        bucket_seconds = int(bucket.total_seconds())
        latest_per_bucket: dict[int, QueueHistoryPoint] = {}
        for row in rows:
            key = int((row.timestamp - _EPOCH).total_seconds()) // bucket_seconds
            # Ascending order, so the last row seen is the newest of its bucket.
            latest_per_bucket[key] = QueueHistoryPoint(
                queue_depth=row.queue_depth,
                timestamp=row.timestamp,
                entity_type=row.entity_type,
            )
        return [latest_per_bucket[key] for key in sorted(latest_per_bucket)]
