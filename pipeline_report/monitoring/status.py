"""Aggregate monitoring view over the consumer, queue and history stores."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pipeline_report.monitoring.consumers import ConsumerLivenessTracker
from pipeline_report.monitoring.db import setup_database, utcnow
from pipeline_report.monitoring.history import ProcessingHistoryStore
from pipeline_report.monitoring.optimization_history import OptimizationHistoryStore
from pipeline_report.monitoring.queue_metrics import ENTITY_TYPES, QueueMetricsSampler

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

LEGACY_ENTITY_TYPE = "scene"


class MonitoringService:
    """Wires the monitoring stores to one engine and one clock.

    Args:
        engine: SQLAlchemy engine holding the monitoring tables
        clock: Naive-UTC clock shared by every store
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock
        self.history = ProcessingHistoryStore(engine, clock)
        self.consumers = ConsumerLivenessTracker(engine, self.history, clock)
        self.queue_metrics = QueueMetricsSampler(engine, clock)
        self.optimization_history = OptimizationHistoryStore(engine, clock)

    def setup(self) -> None:
        setup_database(self.engine)

    def status(self, range_: str = "24h") -> dict[str, Any]:
        """Dashboard status payload.

        ``queue`` and ``queueHistory`` mirror the scene entries for clients
        that predate per-type queues.
        """
        now = self.clock()
        queues = {}
        queue_history = {}
        for entity_type in ENTITY_TYPES:
            latest = self.queue_metrics.latest(entity_type)
            queues[entity_type] = latest.to_dict() if latest else None
            queue_history[entity_type] = [
                point.to_dict()
                for point in self.queue_metrics.history(entity_type, range_, now)
            ]

        consumers = self.consumers.list_consumers(now)
        recent = self.history.recent_history()
        processed = self.history.processed_in_last_hour(now)
        self.history.prune(now)

        return {
            "queue": queues[LEGACY_ENTITY_TYPE],
            "queues": queues,
            "queueHistory": queue_history[LEGACY_ENTITY_TYPE],
            "queueHistoryByType": queue_history,
            "consumers": [consumer.to_dict() for consumer in consumers],
            "recentHistory": [entry.to_dict() for entry in recent],
            "processedLastHour": processed,
        }
