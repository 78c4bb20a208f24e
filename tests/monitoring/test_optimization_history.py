"""Tests for the per-scan optimization summary history."""

from datetime import UTC, timedelta

import pytest

STATS = {
    "totalLands": 123201,
    "occupiedLands": 40000,
    "emptyLands": 83201,
    "totalScenes": 5000,
    "averageLandsPerScene": 8.0,
    "scenesWithOptimizedAssets": 4000,
    "scenesWithoutOptimizedAssets": 1000,
    "scenesWithReports": 4500,
    "successfulOptimizations": 4000,
    "failedOptimizations": 500,
    "optimizationPercentage": 80.0,
}


class TestOptimizationHistory:
    def test_record_and_read_back(self, monitoring, clock):
        """A recorded summary reads back with its timestamp and counters."""
        store = monitoring.optimization_history
        store.record(clock().replace(tzinfo=UTC), STATS)

        [entry] = store.entries()

        assert entry["timestamp"] == "2026-03-01T12:00:00Z"
        assert entry["summary"]["totalScenes"] == 5000
        assert entry["summary"]["optimizationPercentage"] == 80.0
        assert "emptyLands" not in entry["summary"]

    def test_newest_first_within_thirty_days(self, monitoring, clock):
        """Entries come newest first and stop at 30 days."""
        store = monitoring.optimization_history
        store.record(clock() - timedelta(days=31), STATS)
        store.record(clock() - timedelta(days=2), {**STATS, "totalScenes": 1})
        store.record(clock() - timedelta(days=1), {**STATS, "totalScenes": 2})

        assert [e["summary"]["totalScenes"] for e in store.entries()] == [2, 1]

    def test_rows_older_than_sixty_days_deleted(self, monitoring, clock):
        """Reading deletes summaries older than 60 days."""
        store = monitoring.optimization_history
        store.record(clock() - timedelta(days=61), STATS)
        store.record(clock(), STATS)

        assert store.entries(now=clock() - timedelta(days=45)) == []

    def test_missing_counter_rejected(self, monitoring, clock):
        """A summary without a required counter is refused."""
        stats = dict(STATS)
        del stats["totalLands"]
        with pytest.raises(KeyError):
            monitoring.optimization_history.record(clock(), stats)
