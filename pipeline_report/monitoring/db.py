"""
Relational schema for pipeline monitoring and scan history.

Four tables, declared with SQLAlchemy Core:

- pipeline_consumers: one mutable row per worker, keyed by consumer id
- pipeline_queue_metrics: append-only queue depth samples
- pipeline_process_history: append-only job completions
- optimization_history: one summary row per completed world scan

Timestamps are stored as naive UTC (``TIMESTAMP WITHOUT TIME ZONE``).
Every store takes an injectable clock returning naive UTC datetimes so
threshold logic can be exercised deterministically.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from pipeline_report.exceptions import StorageError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

consumers_table = Table(
    "pipeline_consumers",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("process_method", String(50), nullable=False),
    Column("status", String(20), nullable=False),
    Column("current_scene_id", String(255)),
    Column("current_step", String(100)),
    Column("progress_percent", Integer, default=0),
    Column("started_at", DateTime),
    Column("last_heartbeat", DateTime, nullable=False),
    Column("created_at", DateTime),
    Column("jobs_completed", Integer, nullable=False, default=0),
    Column("jobs_failed", Integer, nullable=False, default=0),
    Column("avg_processing_time_ms", Integer, nullable=False, default=0),
    Column("is_priority", Boolean, nullable=False, default=False),
    Column("last_job_status", String(20)),
)

queue_metrics_table = Table(
    "pipeline_queue_metrics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("timestamp", DateTime, nullable=False),
    Column("queue_depth", Integer, nullable=False, default=0),
    Column("entity_type", String(20), nullable=False, default="scene"),
    Index("idx_queue_metrics_entity_type", "entity_type", "timestamp"),
)

process_history_table = Table(
    "pipeline_process_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("consumer_id", String(36), nullable=False),
    Column("scene_id", String(255), nullable=False),
    Column("entity_type", String(20), nullable=False, default="scene"),
    Column("process_method", String(50), nullable=False),
    Column("status", String(20), nullable=False),
    Column("started_at", DateTime, nullable=False),
    Column("completed_at", DateTime, nullable=False),
    Column("duration_ms", Integer, nullable=False),
    Column("error_message", Text),
    Column("created_at", DateTime, nullable=False),
    Column("is_priority", Boolean, nullable=False, default=False),
    Index("idx_history_consumer", "consumer_id"),
    Index("idx_history_created", "created_at"),
)

optimization_history_table = Table(
    "optimization_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("timestamp", DateTime, nullable=False),
    Column("total_lands", Integer, nullable=False),
    Column("occupied_lands", Integer, nullable=False),
    Column("total_scenes", Integer, nullable=False),
    Column("scenes_with_optimized", Integer, nullable=False),
    Column("scenes_without_optimized", Integer, nullable=False),
    Column("optimization_percentage", Float, nullable=False),
    Column("scenes_with_reports", Integer, nullable=False),
    Column("successful_optimizations", Integer, nullable=False),
    Column("failed_optimizations", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Index("idx_optimization_history_timestamp", "timestamp"),
)


def utcnow() -> datetime:
    """Current time as naive UTC, matching the stored column type."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    """Serialize a stored naive-UTC timestamp for JSON responses."""
    if value is None:
        return None
    return value.replace(tzinfo=UTC).isoformat().replace("+00:00", "Z")


def create_db_engine(url: str, **kwargs: Any) -> Engine:
    """Create an engine for ``url``.

    SQLite connections are shared across threads (FastAPI runs sync
    handlers in a thread pool); in-memory SQLite uses a single static
    connection so every caller sees the same database.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs.setdefault("poolclass", StaticPool)
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def setup_database(engine: Engine) -> None:
    """Create every table and index that does not exist yet."""
    try:
        metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StorageError(f"Database setup failed: {e}") from e
    logger.info("Database tables ready (%s)", engine.url.render_as_string(hide_password=True))


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """Run a block in one transaction, surfacing driver errors as StorageError."""
    try:
        with engine.begin() as conn:
            yield conn
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e


def upsert(engine: Engine, table: Table):
    """Dialect-specific ``INSERT`` supporting ``on_conflict_do_update``."""
    if engine.dialect.name == "postgresql":
        return postgresql.insert(table)
    if engine.dialect.name == "sqlite":
        return sqlite.insert(table)
    raise StorageError(f"Upsert not supported on {engine.dialect.name}")
