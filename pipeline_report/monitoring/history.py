"""Append-only job completion log with 24-hour retention."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, insert, select

from pipeline_report.monitoring.db import (
    isoformat,
    process_history_table,
    to_naive_utc,
    transaction,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine, Row

logger = logging.getLogger(__name__)

HISTORY_RETENTION = timedelta(hours=24)
RECENT_HISTORY_LIMIT = 20
RANKING_LIMIT = 20
FAILED_JOBS_LIMIT = 100
SUCCESS = "success"


@dataclass
class JobCompletion:
    """One finished job as reported by a consumer."""

    consumer_id: str
    scene_id: str
    process_method: str
    status: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    error_message: str | None = None
    is_priority: bool = False
    entity_type: str = "scene"


@dataclass
class ProcessingHistoryEntry:
    consumer_id: str
    scene_id: str
    process_method: str
    status: str
    duration_ms: int
    completed_at: datetime
    entity_type: str = "scene"
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: Row) -> ProcessingHistoryEntry:
        return cls(
            consumer_id=row.consumer_id,
            scene_id=row.scene_id,
            process_method=row.process_method,
            status=row.status,
            duration_ms=row.duration_ms,
            completed_at=row.completed_at,
            entity_type=row.entity_type,
            error_message=row.error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "consumerId": self.consumer_id,
            "sceneId": self.scene_id,
            "processMethod": self.process_method,
            "status": self.status,
            "durationMs": self.duration_ms,
            "completedAt": isoformat(self.completed_at),
            "entityType": self.entity_type,
        }


@dataclass
class RankingEntry:
    """Derived view over successful completions; never stored."""

    rank: int
    entry: ProcessingHistoryEntry

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, **self.entry.to_dict()}


_columns = (
    process_history_table.c.consumer_id,
    process_history_table.c.scene_id,
    process_history_table.c.process_method,
    process_history_table.c.status,
    process_history_table.c.duration_ms,
    process_history_table.c.completed_at,
    process_history_table.c.entity_type,
    process_history_table.c.error_message,
)


class ProcessingHistoryStore:
    """Job completions from every consumer.

    Rows are pruned by ``created_at`` (ingest time), not by the
    consumer-reported ``completed_at``.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    def record_completion(self, job: JobCompletion) -> None:
        now = self.clock()
        with transaction(self.engine) as conn:
            conn.execute(
                insert(process_history_table).values(
                    consumer_id=job.consumer_id,
                    scene_id=job.scene_id,
                    entity_type=job.entity_type,
                    process_method=job.process_method,
                    status=job.status,
                    started_at=to_naive_utc(job.started_at),
                    completed_at=to_naive_utc(job.completed_at),
                    duration_ms=job.duration_ms,
                    error_message=job.error_message,
                    created_at=now,
                    is_priority=job.is_priority,
                )
            )
        self.prune(now)

    def prune(self, now: datetime | None = None) -> int:
        """Delete rows ingested more than 24 hours before ``now``."""
        cutoff = (now or self.clock()) - HISTORY_RETENTION
        with transaction(self.engine) as conn:
            deleted = conn.execute(
                delete(process_history_table).where(
                    process_history_table.c.created_at < cutoff
                )
            ).rowcount
        if deleted:
            logger.debug("Pruned %d history rows older than %s", deleted, cutoff)
        return deleted

    def recent_history(self, limit: int = RECENT_HISTORY_LIMIT) -> list[ProcessingHistoryEntry]:
        query = (
            select(*_columns)
            .order_by(
                process_history_table.c.completed_at.desc(),
                process_history_table.c.id.desc(),
            )
            .limit(limit)
        )
        with transaction(self.engine) as conn:
            rows = conn.execute(query).all()
        return [ProcessingHistoryEntry.from_row(row) for row in rows]

    def processed_in_last_hour(self, now: datetime | None = None) -> int:
        since = (now or self.clock()) - timedelta(hours=1)
        query = select(func.count()).where(
            process_history_table.c.status == SUCCESS,
            process_history_table.c.completed_at > since,
        )
        with transaction(self.engine) as conn:
            return conn.execute(query).scalar_one()

    def ranking(self, limit: int = RANKING_LIMIT) -> list[RankingEntry]:
        """Slowest successful jobs first; equal durations keep completion order."""
        query = (
            select(*_columns)
            .where(process_history_table.c.status == SUCCESS)
            .order_by(
                process_history_table.c.duration_ms.desc(),
                process_history_table.c.completed_at.asc(),
                process_history_table.c.id.asc(),
            )
            .limit(limit)
        )
        with transaction(self.engine) as conn:
            rows = conn.execute(query).all()
        return [
            RankingEntry(rank=index, entry=ProcessingHistoryEntry.from_row(row))
            for index, row in enumerate(rows, start=1)
        ]

    def failed_jobs(self, limit: int = FAILED_JOBS_LIMIT) -> list[ProcessingHistoryEntry]:
        """Scenes whose most recent completion failed, newest first."""
        latest = (
            select(
                *_columns,
                func.row_number()
                .over(
                    partition_by=process_history_table.c.scene_id,
                    order_by=(
                        process_history_table.c.completed_at.desc(),
                        process_history_table.c.id.desc(),
                    ),
                )
                .label("rn"),
            )
        ).subquery()
        query = (
            select(*(latest.c[column.name] for column in _columns))
            .where(latest.c.rn == 1, latest.c.status != SUCCESS)
            .order_by(latest.c.completed_at.desc())
            .limit(limit)
        )
        with transaction(self.engine) as conn:
            rows = conn.execute(query).all()
        return [ProcessingHistoryEntry.from_row(row) for row in rows]
