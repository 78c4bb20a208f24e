"""Shared fixtures: in-memory database, controllable clock, HTTP responses."""

from datetime import datetime, timedelta
from typing import Any

import httpx
import pytest

from pipeline_report.monitoring.db import create_db_engine, setup_database
from pipeline_report.monitoring.status import MonitoringService


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def _make_response(
    status_code: int = 200,
    *,
    method: str = "GET",
    url: str = "https://example.test/",
    json: Any = None,
    content: bytes | None = None,
    text: str | None = None,
) -> httpx.Response:
    """Real httpx.Response bound to a request, so raise_for_status works."""
    kwargs: dict[str, Any] = {}
    if json is not None:
        kwargs["json"] = json
    elif content is not None:
        kwargs["content"] = content
    elif text is not None:
        kwargs["text"] = text
    return httpx.Response(status_code, request=httpx.Request(method, url), **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0))


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    setup_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def monitoring(engine, clock) -> MonitoringService:
    return MonitoringService(engine, clock)


@pytest.fixture
def make_response():
    """Factory for request-bound httpx responses."""
    return _make_response
