"""Tests for engine creation, timestamp helpers and error mapping."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import text

from pipeline_report.exceptions import StorageError
from pipeline_report.monitoring.db import (
    consumers_table,
    create_db_engine,
    isoformat,
    setup_database,
    to_naive_utc,
    transaction,
    upsert,
)


class TestTimestamps:
    def test_to_naive_utc_converts_aware(self):
        """Aware datetimes are shifted to UTC and made naive."""
        aware = datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_naive_utc(aware) == datetime(2026, 3, 1, 12, 0)

    def test_to_naive_utc_passes_naive_through(self):
        """Naive datetimes are assumed UTC already."""
        naive = datetime(2026, 3, 1, 12, 0)
        assert to_naive_utc(naive) is naive

    def test_isoformat(self):
        """Timestamps serialize with a trailing Z; None stays None."""
        assert isoformat(datetime(2026, 3, 1, 12, 0, 5)) == "2026-03-01T12:00:05Z"
        assert isoformat(None) is None


class TestEngine:
    def test_setup_is_idempotent(self, engine):
        """Creating the tables twice is harmless."""
        setup_database(engine)
        setup_database(engine)

    def test_memory_database_shared_between_connections(self):
        """An in-memory engine keeps its tables across connections."""
        engine = create_db_engine("sqlite://")
        setup_database(engine)
        with engine.connect() as conn:
            tables = conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'")).scalars().all()
        engine.dispose()

        assert "pipeline_consumers" in tables
        assert "optimization_history" in tables

    def test_file_database(self, tmp_path):
        """A file URL creates the database file."""
        engine = create_db_engine(f"sqlite:///{tmp_path / 'monitoring.db'}")
        setup_database(engine)
        engine.dispose()

        assert (tmp_path / "monitoring.db").exists()


class TestErrors:
    def test_transaction_maps_driver_errors(self, engine):
        """Driver errors surface as StorageError."""
        with pytest.raises(StorageError):
            with transaction(engine) as conn:
                conn.execute(text("SELECT * FROM no_such_table"))

    def test_upsert_unsupported_dialect(self):
        """Upserts are refused on dialects without ON CONFLICT."""
        engine = MagicMock()
        engine.dialect.name = "mysql"
        with pytest.raises(StorageError):
            upsert(engine, consumers_table)

    def test_upsert_sqlite(self, engine):
        """SQLite gets its ON CONFLICT insert construct."""
        assert hasattr(upsert(engine, consumers_table), "on_conflict_do_update")
