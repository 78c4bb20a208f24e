"""Pipeline monitoring: consumer liveness, queue depth and job history."""

from .consumers import CLEANUP_THRESHOLD, OFFLINE_THRESHOLD, Consumer, ConsumerLivenessTracker
from .db import create_db_engine, setup_database, utcnow
from .history import JobCompletion, ProcessingHistoryEntry, ProcessingHistoryStore, RankingEntry
from .optimization_history import OptimizationHistoryStore
from .queue_metrics import MAX_SAMPLES_PER_TYPE, QueueMetricsSampler
from .status import MonitoringService

__all__ = [
    "CLEANUP_THRESHOLD",
    "MAX_SAMPLES_PER_TYPE",
    "OFFLINE_THRESHOLD",
    "Consumer",
    "ConsumerLivenessTracker",
    "JobCompletion",
    "MonitoringService",
    "OptimizationHistoryStore",
    "ProcessingHistoryEntry",
    "ProcessingHistoryStore",
    "QueueMetricsSampler",
    "RankingEntry",
    "create_db_engine",
    "setup_database",
    "utcnow",
]
