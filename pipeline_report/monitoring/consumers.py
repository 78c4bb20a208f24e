"""
Consumer liveness tracking.

Each worker process upserts one row on every heartbeat. Liveness is never
stored: a consumer is shown as ``offline`` when its last heartbeat is more
than 30 seconds old, and it disappears (and its row is deleted) once the
heartbeat is five minutes old. Both checks happen on read, so a crashed
worker needs no reaper.

Job completions are appended to the processing history and folded into the
consumer's running counters and average duration.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select, update

from pipeline_report.monitoring.db import (
    consumers_table,
    isoformat,
    to_naive_utc,
    transaction,
    upsert,
    utcnow,
)
from pipeline_report.monitoring.history import JobCompletion, ProcessingHistoryStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine, Row

logger = logging.getLogger(__name__)

OFFLINE_THRESHOLD = timedelta(seconds=30)
CLEANUP_THRESHOLD = timedelta(minutes=5)

IDLE = "idle"
OFFLINE = "offline"


@dataclass
class Consumer:
    """A consumer as shown to readers, with derived liveness status."""

    id: str
    process_method: str
    status: str
    current_scene_id: str | None
    current_step: str | None
    progress_percent: int
    started_at: datetime | None
    last_heartbeat: datetime
    jobs_completed: int
    jobs_failed: int
    avg_processing_time_ms: int
    is_priority: bool
    last_job_status: str | None

    @classmethod
    def from_row(cls, row: Row, now: datetime) -> Consumer:
        offline = now - row.last_heartbeat > OFFLINE_THRESHOLD
        return cls(
            id=row.id,
            process_method=row.process_method,
            status=OFFLINE if offline else row.status,
            current_scene_id=row.current_scene_id,
            current_step=row.current_step,
            progress_percent=row.progress_percent or 0,
            started_at=row.started_at,
            last_heartbeat=row.last_heartbeat,
            jobs_completed=row.jobs_completed or 0,
            jobs_failed=row.jobs_failed or 0,
            avg_processing_time_ms=row.avg_processing_time_ms or 0,
            is_priority=bool(row.is_priority),
            last_job_status=row.last_job_status,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "processMethod": self.process_method,
            "status": self.status,
            "currentSceneId": self.current_scene_id,
            "currentStep": self.current_step,
            "progressPercent": self.progress_percent,
            "startedAt": isoformat(self.started_at),
            "lastHeartbeat": isoformat(self.last_heartbeat),
            "jobsCompleted": self.jobs_completed,
            "jobsFailed": self.jobs_failed,
            "avgProcessingTimeMs": self.avg_processing_time_ms,
            "isPriority": self.is_priority,
            "lastJobStatus": self.last_job_status,
        }


def running_average(old_avg: int, prior_jobs: int, duration_ms: int) -> int:
    """Fold one duration into an average over ``prior_jobs`` jobs.

    Halves round up, not to even.
    """
    if prior_jobs <= 0:
        return duration_ms
    return math.floor((old_avg * prior_jobs + duration_ms) / (prior_jobs + 1) + 0.5)


class ConsumerLivenessTracker:
    def __init__(
        self,
        engine: Engine,
        history: ProcessingHistoryStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.history = history
        self.clock = clock

    def record_heartbeat(
        self,
        consumer_id: str,
        process_method: str,
        status: str,
        *,
        current_scene_id: str | None = None,
        current_step: str | None = None,
        progress_percent: int | None = None,
        started_at: datetime | None = None,
        is_priority: bool = False,
    ) -> None:
        """Insert or refresh the consumer row; job counters are left untouched."""
        now = self.clock()
        stmt = upsert(self.engine, consumers_table).values(
            id=consumer_id,
            process_method=process_method,
            status=status,
            current_scene_id=current_scene_id or None,
            current_step=current_step or None,
            progress_percent=progress_percent or 0,
            started_at=to_naive_utc(started_at) if started_at else None,
            last_heartbeat=now,
            created_at=now,
            jobs_completed=0,
            jobs_failed=0,
            avg_processing_time_ms=0,
            is_priority=is_priority,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[consumers_table.c.id],
            set_={
                "process_method": stmt.excluded.process_method,
                "status": stmt.excluded.status,
                "current_scene_id": stmt.excluded.current_scene_id,
                "current_step": stmt.excluded.current_step,
                "progress_percent": stmt.excluded.progress_percent,
                "started_at": stmt.excluded.started_at,
                "last_heartbeat": stmt.excluded.last_heartbeat,
                "is_priority": stmt.excluded.is_priority,
            },
        )
        with transaction(self.engine) as conn:
            conn.execute(stmt)
        logger.debug("Heartbeat from %s (%s)", consumer_id, status)

    def record_job_complete(self, job: JobCompletion) -> None:
        """Append the completion and reset the consumer to idle.

        The priority flag is cleared unconditionally, even if a newer
        priority heartbeat raced ahead of this completion.
        """
        self.history.record_completion(job)

        succeeded = job.status == "success"
        with transaction(self.engine) as conn:
            row = conn.execute(
                select(
                    consumers_table.c.jobs_completed,
                    consumers_table.c.jobs_failed,
                    consumers_table.c.avg_processing_time_ms,
                ).where(consumers_table.c.id == job.consumer_id)
            ).first()
            if row is None:
                logger.debug("Job completion from unknown consumer %s", job.consumer_id)
                return

            prior = (row.jobs_completed or 0) + (row.jobs_failed or 0)
            conn.execute(
                update(consumers_table)
                .where(consumers_table.c.id == job.consumer_id)
                .values(
                    jobs_completed=consumers_table.c.jobs_completed + (1 if succeeded else 0),
                    jobs_failed=consumers_table.c.jobs_failed + (0 if succeeded else 1),
                    avg_processing_time_ms=running_average(
                        row.avg_processing_time_ms or 0, prior, job.duration_ms
                    ),
                    status=IDLE,
                    current_scene_id=None,
                    current_step=None,
                    progress_percent=0,
                    started_at=None,
                    is_priority=False,
                    last_job_status=job.status,
                )
            )

    def list_consumers(self, now: datetime | None = None) -> list[Consumer]:
        """Consumers seen in the last five minutes, most recent first.

        Rows older than that are deleted as a side effect.
        """
        now = now or self.clock()
        cutoff = now - CLEANUP_THRESHOLD
        with transaction(self.engine) as conn:
            rows = conn.execute(
                select(consumers_table)
                .where(consumers_table.c.last_heartbeat > cutoff)
                .order_by(consumers_table.c.last_heartbeat.desc())
            ).all()
            purged = conn.execute(
                delete(consumers_table).where(consumers_table.c.last_heartbeat < cutoff)
            ).rowcount
        if purged:
            logger.info("Removed %d stale consumers", purged)
        return [Consumer.from_row(row, now) for row in rows]
