"""Project settings loaded from pyproject.toml [tool.pipeline-report] section.

Configuration is organized into subsections:
  [tool.pipeline-report]               : grid bounds
  [tool.pipeline-report.content]       : content API URL, world batch size
  [tool.pipeline-report.optimization]  : optimized asset origin, API version, bucket listing
  [tool.pipeline-report.worlds]        : worlds content server
  [tool.pipeline-report.schedule]      : periodic report generation
  [tool.pipeline-report.server]        : HTTP bind address

All settings support environment variable overrides (PIPELINE_REPORT_* prefix,
plus the deployment variables MONITORING_SECRET, DATABASE_URL, PRODUCER_URL, ...).
Secrets are only ever read from the environment.
"""

import importlib.resources
import os
import tomllib
from dataclasses import dataclass
from functools import cache
from pathlib import Path


@cache
def _load_pyproject_settings() -> dict:
    """Load settings from pyproject.toml [tool.pipeline-report] section.

    Returns:
        Dictionary of settings from pyproject.toml, empty dict if not found.
    """
    try:
        files = importlib.resources.files("pipeline_report")
        pyproject_path = files.joinpath("..", "pyproject.toml")

        if not pyproject_path.is_file():  # type: ignore[union-attr]
            # Walk up to find pyproject.toml (for development)
            current = Path(__file__).resolve().parent
            while current != current.parent:
                candidate = current / "pyproject.toml"
                if candidate.exists():
                    pyproject_path = candidate
                    break
                current = current.parent
            else:
                return {}

        content = pyproject_path.read_text()  # type: ignore[union-attr]
        data = tomllib.loads(content)
        return data.get("tool", {}).get("pipeline-report", {})
    except (OSError, tomllib.TOMLDecodeError):
        return {}


def _get_section(section: str) -> dict:
    """Get a subsection from [tool.pipeline-report.{section}]."""
    return _load_pyproject_settings().get(section, {})


def _parse_bool(value: str | bool) -> bool:
    """Parse a boolean value from string or bool."""
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("true", "1", "yes", "on")


# ─── World grid ─────────────────────────────────────────────────────────────


def get_coordinate_bounds() -> tuple[int, int]:
    """Get the inclusive (min, max) land coordinate of the square grid.

    Priority: PIPELINE_REPORT_MIN_COORD / PIPELINE_REPORT_MAX_COORD env
              → [tool.pipeline-report].min-coord / max-coord → (-175, 175).
    """
    base = _load_pyproject_settings()
    min_coord = os.getenv("PIPELINE_REPORT_MIN_COORD") or base.get("min-coord", -175)
    max_coord = os.getenv("PIPELINE_REPORT_MAX_COORD") or base.get("max-coord", 175)
    return int(min_coord), int(max_coord)


# ─── Content API ────────────────────────────────────────────────────────────

DEFAULT_CONTENT_API_URL = "https://peer.decentraland.org/content/entities/active"
DEFAULT_CONTENT_SERVER_URL = "https://peer.decentraland.org/content"


def get_content_api_url() -> str:
    """Get the active-entities endpoint of the content server."""
    if env := os.getenv("PIPELINE_REPORT_CONTENT_API_URL"):
        return env
    return _get_section("content").get("api-url", DEFAULT_CONTENT_API_URL)


def get_batch_size() -> int:
    """Get the number of pointers requested per world batch.

    CI runners hit 500s on very large batches, so the default drops to
    10 000 when the ``CI`` variable is set.

    Priority: PIPELINE_REPORT_BATCH_SIZE env → CI default → [content].batch-size → 50 000.
    """
    if env := os.getenv("PIPELINE_REPORT_BATCH_SIZE"):
        return int(env)
    if os.getenv("CI"):
        return 10_000
    return int(_get_section("content").get("batch-size", 50_000))


# ─── Optimized assets ───────────────────────────────────────────────────────


def get_optimization_base_url() -> str:
    if env := os.getenv("PIPELINE_REPORT_OPTIMIZATION_URL"):
        return env.rstrip("/")
    base = _get_section("optimization").get(
        "base-url", "https://optimized-assets.dclexplorer.com"
    )
    return base.rstrip("/")


def get_optimization_version() -> str:
    if env := os.getenv("PIPELINE_REPORT_OPTIMIZATION_VERSION"):
        return env
    return _get_section("optimization").get("version", "v3")


def get_bucket_listing_url() -> str | None:
    """Get the S3-compatible listing endpoint used for the fast inventory.

    When unset the reconciler skips straight to per-entity HTTP probes.
    """
    if env := os.getenv("PIPELINE_REPORT_BUCKET_LISTING_URL"):
        return env
    return _get_section("optimization").get("bucket-listing-url")


# ─── Worlds ─────────────────────────────────────────────────────────────────

DEFAULT_WORLDS_API_URL = "https://worlds-content-server.decentraland.org"


def get_worlds_api_url() -> str:
    """Get the base URL of the worlds content server.

    Priority: PIPELINE_REPORT_WORLDS_API_URL env → [worlds].api-url → public server.
    """
    if env := os.getenv("PIPELINE_REPORT_WORLDS_API_URL"):
        return env.rstrip("/")
    return _get_section("worlds").get("api-url", DEFAULT_WORLDS_API_URL).rstrip("/")


# ─── Database ───────────────────────────────────────────────────────────────


def get_database_url() -> str:
    """Get the SQLAlchemy database URL.

    Priority: DATABASE_URL env → POSTGRES_* env → local SQLite file.
    """
    if env := os.getenv("DATABASE_URL"):
        return env
    if host := os.getenv("POSTGRES_HOST"):
        port = os.getenv("POSTGRES_PORT", "5432")
        user = os.getenv("POSTGRES_USER", "pipeline")
        password = os.getenv("POSTGRES_PASSWORD", "")
        database = os.getenv("POSTGRES_DB", "pipeline_report")
        return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{database}"
    return "sqlite:///pipeline_report.db"


# ─── Schedule ───────────────────────────────────────────────────────────────


def get_schedule_enabled() -> bool:
    if env := os.getenv("REPORT_SCHEDULE_ENABLED"):
        return _parse_bool(env)
    return _parse_bool(_get_section("schedule").get("enabled", False))


def get_schedule_interval_hours() -> float:
    if env := os.getenv("REPORT_SCHEDULE_INTERVAL_HOURS"):
        return float(env)
    return float(_get_section("schedule").get("interval-hours", 3))


def get_run_on_startup() -> bool:
    if env := os.getenv("REPORT_RUN_ON_STARTUP"):
        return _parse_bool(env)
    return _parse_bool(_get_section("schedule").get("run-on-startup", False))


# ─── Server ─────────────────────────────────────────────────────────────────


def get_server_host() -> str:
    if env := os.getenv("PIPELINE_REPORT_HOST"):
        return env
    return _get_section("server").get("host", "127.0.0.1")


def get_server_port() -> int:
    if env := os.getenv("PIPELINE_REPORT_PORT"):
        return int(env)
    return int(_get_section("server").get("port", 5001))


# ─── Snapshot ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Resolved settings handed to the service components."""

    content_api_url: str = DEFAULT_CONTENT_API_URL
    batch_size: int = 50_000
    min_coord: int = -175
    max_coord: int = 175
    optimization_base_url: str = "https://optimized-assets.dclexplorer.com"
    optimization_version: str = "v3"
    bucket_listing_url: str | None = None
    worlds_api_url: str = DEFAULT_WORLDS_API_URL
    database_url: str = "sqlite:///pipeline_report.db"
    monitoring_secret: str | None = None
    upload_secret: str | None = None
    queue_trigger_password: str | None = None
    producer_url: str | None = None
    producer_secret: str | None = None
    schedule_enabled: bool = False
    schedule_interval_hours: float = 3.0
    run_on_startup: bool = False

    @property
    def optimization_api_url(self) -> str:
        return f"{self.optimization_base_url}/{self.optimization_version}"

    def asset_url(self, entity_id: str) -> str:
        return f"{self.optimization_api_url}/{entity_id}-mobile.zip"

    def report_url(self, entity_id: str) -> str:
        return f"{self.optimization_api_url}/{entity_id}-report.json"

    @property
    def worlds_index_url(self) -> str:
        return f"{self.worlds_api_url}/index"


def get_settings() -> Settings:
    """Resolve every setting into a :class:`Settings` snapshot."""
    min_coord, max_coord = get_coordinate_bounds()
    return Settings(
        content_api_url=get_content_api_url(),
        batch_size=get_batch_size(),
        min_coord=min_coord,
        max_coord=max_coord,
        optimization_base_url=get_optimization_base_url(),
        optimization_version=get_optimization_version(),
        bucket_listing_url=get_bucket_listing_url(),
        worlds_api_url=get_worlds_api_url(),
        database_url=get_database_url(),
        monitoring_secret=os.getenv("MONITORING_SECRET") or None,
        upload_secret=os.getenv("UPLOAD_SECRET") or None,
        queue_trigger_password=os.getenv("QUEUE_TRIGGER_PASSWORD") or None,
        producer_url=(os.getenv("PRODUCER_URL") or "").rstrip("/") or None,
        producer_secret=os.getenv("PRODUCER_TMP_SECRET") or None,
        schedule_enabled=get_schedule_enabled(),
        schedule_interval_hours=get_schedule_interval_hours(),
        run_on_startup=get_run_on_startup(),
    )
