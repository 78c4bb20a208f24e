"""FastAPI application for the pipeline report service.

Routes:
  GET  /health                          liveness
  GET  /api/report-data                 last good report blob (503 until one exists)
  GET  /api/report-status               availability and generation progress
  POST /api/report/trigger              start a single-flight report run
  GET  /api/get-history                 scan summaries of the last 30 days
  POST /api/update-history              record a scan summary (UPLOAD_SECRET)
  GET  /api/monitoring/status           consumers, queues and recent jobs
  POST /api/monitoring/heartbeat        consumer heartbeat (MONITORING_SECRET)
  POST /api/monitoring/job-complete     job completion (MONITORING_SECRET)
  POST /api/monitoring/queue-metrics    queue depth sample (MONITORING_SECRET)
  POST /api/monitoring/queue-trigger    queue one entity (QUEUE_TRIGGER_PASSWORD)
  POST /api/monitoring/queue-bulk       queue many entities (QUEUE_TRIGGER_PASSWORD)
  GET  /api/monitoring/ranking          slowest successful jobs
  GET  /api/monitoring/failed-jobs      scenes whose latest job failed
  POST /api/monitoring/setup-db         create tables (MONITORING_SECRET)

Errors use a ``{"error": message}`` body. Missing or malformed fields give
400, a wrong secret or password gives 401 (checked before field
validation), storage failures give 500.
"""

from __future__ import annotations

import hmac
import logging
import math
import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pipeline_report import __version__
from pipeline_report.exceptions import (
    ProducerError,
    ProducerNotConfigured,
    ProducerTimeout,
    StorageError,
)
from pipeline_report.monitoring.db import create_db_engine
from pipeline_report.monitoring.history import JobCompletion
from pipeline_report.monitoring.status import MonitoringService
from pipeline_report.producer import ProducerClient
from pipeline_report.report.scheduler import ReportScheduler
from pipeline_report.report.storage import ReportStorage
from pipeline_report.settings import Settings, get_settings

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

RATE_LIMIT_SECONDS = 1.0
RATE_LIMIT_EXPIRY_SECONDS = 60.0
REPORT_CACHE_CONTROL = "public, max-age=300"

EntityType = Literal["scene", "wearable", "emote"]


# ─── Request models ─────────────────────────────────────────────────────────


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SecretRequest(ApiModel):
    secret: str | None = None


class HeartbeatRequest(SecretRequest):
    consumer_id: str = Field(..., min_length=1, max_length=36)
    process_method: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    current_scene_id: str | None = None
    current_step: str | None = None
    progress_percent: int | None = Field(None, ge=0, le=100)
    started_at: datetime | None = None
    is_priority: bool = False


class JobCompleteRequest(SecretRequest):
    consumer_id: str = Field(..., min_length=1, max_length=36)
    scene_id: str = Field(..., min_length=1)
    process_method: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    started_at: datetime
    completed_at: datetime
    duration_ms: int = Field(..., gt=0)
    error_message: str | None = None
    is_priority: bool = False
    entity_type: EntityType = "scene"


class QueueMetricsRequest(SecretRequest):
    queue_depth: int = Field(..., ge=0)
    entity_type: EntityType = "scene"


class QueueTriggerRequest(ApiModel):
    password: str | None = None
    entity_id: str
    entity_type: EntityType = "scene"
    prioritize: bool = False
    content_server_urls: list[str] | None = None

    @field_validator("entity_id")
    @classmethod
    def entity_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("entityId must not be blank")
        return value.strip()


class QueueBulkRequest(ApiModel):
    password: str | None = None
    scene_ids: list[Any] = Field(..., min_length=1)
    entity_type: EntityType = "scene"
    content_server_urls: list[str] | None = None


class HistoryStats(ApiModel):
    total_lands: int
    occupied_lands: int
    total_scenes: int
    scenes_with_optimized_assets: int
    scenes_without_optimized_assets: int
    optimization_percentage: float
    scenes_with_reports: int
    successful_optimizations: int
    failed_optimizations: int


class UpdateHistoryRequest(SecretRequest):
    timestamp: datetime
    stats: HistoryStats


class ApiError(Exception):
    """Rejected request, rendered as ``{"error": message}``."""

    def __init__(self, status_code: int, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra


# ─── Helpers ────────────────────────────────────────────────────────────────


def credential_matches(provided: Any, expected: str | None) -> bool:
    """Constant-time comparison; an unset credential rejects everything."""
    if not expected or not isinstance(provided, str):
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


class RateLimiter:
    """At most one request per client key every ``interval`` seconds."""

    def __init__(
        self,
        interval: float = RATE_LIMIT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.clock = clock
        self._last: dict[str, float] = {}

    def check(self, key: str) -> float:
        """Record a request; return seconds to wait, or 0 when allowed."""
        now = self.clock()
        last = self._last.get(key)
        if last is not None and now - last < self.interval:
            return self.interval - (now - last)
        self._last[key] = now
        for stale in [k for k, t in self._last.items() if now - t > RATE_LIMIT_EXPIRY_SECONDS]:
            del self._last[stale]
        return 0.0


def client_key(request: Request) -> str:
    if forwarded := request.headers.get("x-forwarded-for"):
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat().replace("+00:00", "Z") if value else None


# Which credential guards which POST route, for auth-before-validation.
_CREDENTIALS: dict[str, tuple[str, str, str]] = {
    "/api/monitoring/heartbeat": ("secret", "monitoring_secret", "Unauthorized"),
    "/api/monitoring/job-complete": ("secret", "monitoring_secret", "Unauthorized"),
    "/api/monitoring/queue-metrics": ("secret", "monitoring_secret", "Unauthorized"),
    "/api/monitoring/setup-db": ("secret", "monitoring_secret", "Unauthorized"),
    "/api/report/trigger": ("secret", "monitoring_secret", "Unauthorized"),
    "/api/update-history": ("secret", "upload_secret", "Unauthorized"),
    "/api/monitoring/queue-trigger": ("password", "queue_trigger_password", "Invalid password"),
    "/api/monitoring/queue-bulk": ("password", "queue_trigger_password", "Invalid password"),
}


def _validation_message(exc: RequestValidationError) -> str:
    missing = [
        str(error["loc"][-1])
        for error in exc.errors()
        if error.get("type") == "missing" and error.get("loc")
    ]
    if missing:
        return "Missing required fields: " + ", ".join(missing)
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
    return f"Invalid field {field}: {first.get('msg', 'invalid value')}"


# ─── Application ────────────────────────────────────────────────────────────


def create_app(
    settings: Settings | None = None,
    *,
    monitoring: MonitoringService | None = None,
    storage: ReportStorage | None = None,
    scheduler: ReportScheduler | None = None,
    http_client: httpx.AsyncClient | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Every collaborator can be injected; the defaults are built from
    ``settings``. The report scheduler is started and stopped with the
    application lifespan.
    """
    settings = settings or get_settings()
    monitoring = monitoring or MonitoringService(create_db_engine(settings.database_url))
    storage = storage or ReportStorage()
    limiter = rate_limiter or RateLimiter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or httpx.AsyncClient(follow_redirects=True)
        app.state.producer = ProducerClient(
            client, base_url=settings.producer_url, secret=settings.producer_secret
        )
        app.state.scheduler = scheduler or ReportScheduler(
            storage,
            settings=settings,
            history=monitoring.optimization_history,
            client=client,
        )
        try:
            monitoring.setup()
        except StorageError as e:
            logger.warning("Database not ready at startup: %s", e)
        await app.state.scheduler.start()
        logger.info("Pipeline report server started")
        try:
            yield
        finally:
            await app.state.scheduler.stop()
            if http_client is None:
                await client.aclose()
            logger.info("Pipeline report server stopped")

    app = FastAPI(
        title="Pipeline Report",
        description="World optimization report and pipeline monitoring service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.monitoring = monitoring
    app.state.storage = storage

    def require(provided: Any, expected: str | None, message: str = "Unauthorized") -> None:
        if not credential_matches(provided, expected):
            raise ApiError(401, message)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.message, **exc.extra}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        guard = _CREDENTIALS.get(request.url.path)
        if guard is not None:
            field, setting, message = guard
            body = exc.body if isinstance(exc.body, dict) else {}
            if not credential_matches(body.get(field), getattr(settings, setting)):
                return JSONResponse(status_code=401, content={"error": message})
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": f"Storage error: {exc}"})

    # ── Health and report ──────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "timestamp": _isoformat(datetime.now(UTC))}

    @app.get("/api/report-data")
    async def report_data() -> JSONResponse:
        snapshot = storage.snapshot()
        if snapshot.report is None:
            return JSONResponse(
                status_code=503,
                content={
                    "error": "Report data not available yet.",
                    "generating": snapshot.generating,
                    "progress": snapshot.progress if snapshot.generating else 0,
                    "progressMessage": (
                        snapshot.progress_message
                        if snapshot.generating
                        else "Waiting for first report generation..."
                    ),
                    "lastUpdated": None,
                },
            )
        return JSONResponse(
            content=snapshot.report, headers={"Cache-Control": REPORT_CACHE_CONTROL}
        )

    @app.get("/api/report-status")
    async def report_status() -> dict[str, Any]:
        snapshot = storage.snapshot()
        return {
            "available": snapshot.available,
            "lastUpdated": _isoformat(snapshot.last_updated),
            "generated": _isoformat(snapshot.generated),
            "generating": snapshot.generating,
            "progress": snapshot.progress,
            "progressMessage": snapshot.progress_message,
        }

    @app.post("/api/report/trigger", status_code=202)
    async def report_trigger(body: SecretRequest, request: Request) -> dict[str, Any]:
        require(body.secret, settings.monitoring_secret)
        started = request.app.state.scheduler.spawn()
        return {"started": started, "generating": True}

    # ── Scan history ───────────────────────────────────────────────────────

    @app.get("/api/get-history")
    def get_history() -> dict[str, Any]:
        try:
            return {"entries": monitoring.optimization_history.entries()}
        except StorageError as e:
            logger.error("Error fetching history: %s", e)
            return {
                "entries": [],
                "message": "Unable to fetch history. Database may not be configured.",
            }

    @app.post("/api/update-history")
    def update_history(body: UpdateHistoryRequest) -> dict[str, Any]:
        require(body.secret, settings.upload_secret)
        monitoring.optimization_history.record(
            body.timestamp, body.stats.model_dump(by_alias=True)
        )
        return {"success": True, "message": "History updated successfully"}

    # ── Monitoring ─────────────────────────────────────────────────────────

    @app.get("/api/monitoring/status")
    def monitoring_status(range_: str = Query("24h", alias="range")) -> dict[str, Any]:
        return monitoring.status(range_)

    @app.post("/api/monitoring/heartbeat")
    def heartbeat(body: HeartbeatRequest) -> dict[str, Any]:
        require(body.secret, settings.monitoring_secret)
        monitoring.consumers.record_heartbeat(
            body.consumer_id,
            body.process_method,
            body.status,
            current_scene_id=body.current_scene_id,
            current_step=body.current_step,
            progress_percent=body.progress_percent,
            started_at=body.started_at,
            is_priority=body.is_priority,
        )
        return {"success": True}

    @app.post("/api/monitoring/job-complete")
    def job_complete(body: JobCompleteRequest) -> dict[str, Any]:
        require(body.secret, settings.monitoring_secret)
        monitoring.consumers.record_job_complete(
            JobCompletion(
                consumer_id=body.consumer_id,
                scene_id=body.scene_id,
                process_method=body.process_method,
                status=body.status,
                started_at=body.started_at,
                completed_at=body.completed_at,
                duration_ms=body.duration_ms,
                error_message=body.error_message,
                is_priority=body.is_priority,
                entity_type=body.entity_type,
            )
        )
        return {"success": True}

    @app.post("/api/monitoring/queue-metrics")
    def queue_metrics(body: QueueMetricsRequest) -> dict[str, Any]:
        require(body.secret, settings.monitoring_secret)
        monitoring.queue_metrics.record_sample(body.entity_type, body.queue_depth)
        return {"success": True}

    @app.get("/api/monitoring/ranking")
    def ranking() -> dict[str, Any]:
        return {"ranking": [entry.to_dict() for entry in monitoring.history.ranking()]}

    @app.get("/api/monitoring/failed-jobs")
    def failed_jobs() -> dict[str, Any]:
        failed = monitoring.history.failed_jobs()
        return {
            "failed": [
                {**entry.to_dict(), "errorMessage": entry.error_message}
                for entry in failed
            ]
        }

    @app.post("/api/monitoring/setup-db")
    def setup_db(body: SecretRequest) -> dict[str, Any]:
        require(body.secret, settings.monitoring_secret)
        monitoring.setup()
        return {"success": True, "message": "Database tables created successfully"}

    # ── Queue trigger ──────────────────────────────────────────────────────

    async def _forward(call) -> dict[str, Any]:
        try:
            result = await call
        except ProducerNotConfigured as e:
            raise ApiError(500, str(e)) from e
        except ProducerTimeout as e:
            raise ApiError(504, str(e)) from e
        except ProducerError as e:
            raise ApiError(e.status_code, str(e)) from e
        except httpx.HTTPError as e:
            logger.error("Error calling producer: %s", e)
            raise ApiError(500, f"Failed to trigger queue: {e}") from e
        return result.to_dict()

    @app.post("/api/monitoring/queue-trigger")
    async def queue_trigger(body: QueueTriggerRequest, request: Request) -> dict[str, Any]:
        require(body.password, settings.queue_trigger_password, "Invalid password")
        wait = limiter.check(client_key(request))
        if wait:
            raise ApiError(
                429,
                "Rate limited. Please wait 1 second between requests.",
                retryAfter=math.ceil(wait),
            )
        return await _forward(
            request.app.state.producer.queue_entity(
                body.entity_id,
                entity_type=body.entity_type,
                prioritize=body.prioritize,
                content_server_urls=body.content_server_urls,
            )
        )

    @app.post("/api/monitoring/queue-bulk")
    async def queue_bulk(body: QueueBulkRequest, request: Request) -> dict[str, Any]:
        require(body.password, settings.queue_trigger_password, "Invalid password")
        return await _forward(
            request.app.state.producer.queue_bulk(
                body.scene_ids,
                entity_type=body.entity_type,
                content_server_urls=body.content_server_urls,
            )
        )

    return app
