"""Tests for queue depth samples, the per-type cap and bucketed history."""

from datetime import datetime, timedelta

from sqlalchemy import func, insert, select

from pipeline_report.monitoring.db import queue_metrics_table
from pipeline_report.monitoring.queue_metrics import (
    MAX_SAMPLES_PER_TYPE,
    SAMPLING,
    sampling_for,
)


def _count(engine, entity_type: str) -> int:
    with engine.connect() as conn:
        return conn.execute(
            select(func.count())
            .select_from(queue_metrics_table)
            .where(queue_metrics_table.c.entity_type == entity_type)
        ).scalar_one()


class TestSampling:
    def test_known_ranges(self):
        """Each range maps to its window and bucket width."""
        assert sampling_for("1h") == (timedelta(hours=1), timedelta(minutes=5))
        assert sampling_for("24h") == (timedelta(hours=24), timedelta(minutes=20))
        assert sampling_for("7d") == (timedelta(days=7), timedelta(minutes=120))

    def test_unknown_range_uses_seven_days(self):
        """Unrecognised ranges fall back to 7d sampling."""
        assert sampling_for("fortnight") == SAMPLING["7d"]


class TestRecordSample:
    def test_latest_per_type(self, monitoring, clock):
        """Latest returns the newest sample of each type."""
        sampler = monitoring.queue_metrics
        sampler.record_sample("scene", 10)
        clock.advance(minutes=1)
        sampler.record_sample("scene", 12)
        sampler.record_sample("wearable", 3)

        latest = sampler.latest("scene")
        assert latest.queue_depth == 12
        assert latest.last_updated == clock()
        assert sampler.latest("wearable").queue_depth == 3
        assert sampler.latest("emote") is None

    def test_cap_is_per_type(self, monitoring, engine, clock):
        """The cap trims each entity type on its own."""
        sampler = monitoring.queue_metrics
        for depth in range(5):
            clock.advance(minutes=1)
            sampler.record_sample("scene", depth)
        sampler.record_sample("wearable", 1)

        assert sampler.enforce_cap(max_samples=3) == 2
        assert _count(engine, "scene") == 3
        assert _count(engine, "wearable") == 1
        assert sampler.latest("scene").queue_depth == 4

    def test_insert_beyond_cap_drops_oldest(self, monitoring, engine, clock):
        """The 15 001st scene sample evicts the oldest one."""
        start = clock() - timedelta(minutes=MAX_SAMPLES_PER_TYPE)
        with engine.begin() as conn:
            conn.execute(
                insert(queue_metrics_table),
                [
                    {
                        "timestamp": start + timedelta(minutes=i),
                        "queue_depth": i,
                        "entity_type": "scene",
                    }
                    for i in range(MAX_SAMPLES_PER_TYPE)
                ],
            )

        monitoring.queue_metrics.record_sample("scene", 999)

        assert _count(engine, "scene") == MAX_SAMPLES_PER_TYPE
        with engine.connect() as conn:
            oldest = conn.execute(select(func.min(queue_metrics_table.c.timestamp))).scalar_one()
        assert oldest == start + timedelta(minutes=1)


    def test_wearable_cap_leaves_other_types_alone(self, monitoring, engine, clock):
        """15 001 wearable samples keep the newest 15 000; scenes and emotes are untouched."""
        start = clock() - timedelta(minutes=MAX_SAMPLES_PER_TYPE + 10)
        rows = [
            {"timestamp": start + timedelta(minutes=i), "queue_depth": i, "entity_type": "wearable"}
            for i in range(MAX_SAMPLES_PER_TYPE)
        ]
        rows += [
            {"timestamp": start, "queue_depth": 5, "entity_type": entity_type}
            for entity_type in ("scene", "scene", "emote")
        ]
        with engine.begin() as conn:
            conn.execute(insert(queue_metrics_table), rows)

        monitoring.queue_metrics.record_sample("wearable", 999)

        assert _count(engine, "wearable") == MAX_SAMPLES_PER_TYPE
        assert _count(engine, "scene") == 2
        assert _count(engine, "emote") == 1
        assert monitoring.queue_metrics.latest("wearable").queue_depth == 999
        with engine.connect() as conn:
            depths = conn.execute(
                select(queue_metrics_table.c.queue_depth).where(
                    queue_metrics_table.c.entity_type == "wearable"
                )
            ).scalars()
            assert 0 not in set(depths)


class TestHistory:
    def test_keeps_newest_sample_per_bucket(self, monitoring, clock):
        """1h history keeps the newest sample per 5-minute bucket."""
        sampler = monitoring.queue_metrics
        for minute, depth in [(59, 1), (1, 2), (4, 3), (6, 4)]:
            hour = 10 if minute == 59 else 11
            clock.now = datetime(2026, 3, 1, hour, minute)
            sampler.record_sample("scene", depth)
        clock.now = datetime(2026, 3, 1, 12, 0)

        points = sampler.history("scene", "1h")

        # 10:59 is outside the window; 11:01 and 11:04 share a 5-minute bucket
        assert [(p.timestamp.minute, p.queue_depth) for p in points] == [(4, 3), (6, 4)]
        assert points[0].to_dict() == {
            "queueDepth": 3,
            "timestamp": "2026-03-01T11:04:00Z",
            "entityType": "scene",
        }

    def test_filters_by_entity_type(self, monitoring, clock):
        """History only returns samples of the requested type."""
        monitoring.queue_metrics.record_sample("wearable", 7)

        assert monitoring.queue_metrics.history("scene") == []
        assert [p.queue_depth for p in monitoring.queue_metrics.history("wearable")] == [7]

    def test_seven_days_uses_two_hour_aligned_buckets(self, monitoring, engine, clock):
        """Samples every 10 minutes over 8 days collapse to the last one per 2-hour bucket."""
        now = clock()
        start = now - timedelta(days=8)
        with engine.begin() as conn:
            conn.execute(
                insert(queue_metrics_table),
                [
                    {
                        "timestamp": start + timedelta(minutes=10 * i),
                        "queue_depth": i,
                        "entity_type": "scene",
                    }
                    for i in range(8 * 24 * 6 + 1)
                ],
            )

        points = monitoring.queue_metrics.history("scene", "7d")

        # 84 full buckets in the window plus the sample taken exactly at noon
        assert len(points) == 7 * 12 + 1
        assert points[0].timestamp == now - timedelta(days=7) + timedelta(minutes=110)
        assert all(p.timestamp.hour % 2 == 1 and p.timestamp.minute == 50 for p in points[:-1])
        assert points[-1].timestamp == now
        buckets = [(p.timestamp - datetime(1970, 1, 1)) // timedelta(hours=2) for p in points]
        assert buckets == sorted(set(buckets))

    def test_window_excludes_older_samples(self, monitoring, clock):
        """A 7d read ignores samples older than seven days."""
        sampler = monitoring.queue_metrics
        clock.advance(days=-8)
        sampler.record_sample("scene", 1)
        clock.advance(days=8)
        sampler.record_sample("scene", 2)

        assert [p.queue_depth for p in sampler.history("scene", "7d")] == [2]
