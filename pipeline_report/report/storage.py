"""In-memory holder of the last good report and the generation progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

STARTING_MESSAGE = "Starting report generation..."


@dataclass
class ReportSnapshot:
    """Point-in-time view of the storage for the HTTP layer."""

    report: dict[str, Any] | None
    last_updated: datetime | None
    generating: bool
    progress: float
    progress_message: str

    @property
    def available(self) -> bool:
        return self.report is not None

    @property
    def generated(self) -> datetime | None:
        if self.report is None or not self.report.get("g"):
            return None
        return datetime.fromtimestamp(self.report["g"] / 1000, tz=UTC)


class ReportStorage:
    """Keeps the last successfully generated report blob.

    A failed run never reaches :meth:`set_report`, so readers keep seeing
    the previous report (with its ``last_updated``) until a new one lands.
    """

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(UTC))
        self._report: dict[str, Any] | None = None
        self._last_updated: datetime | None = None
        self.generating = False
        self.progress: float = 0
        self.progress_message = ""

    @property
    def report(self) -> dict[str, Any] | None:
        return self._report

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    def set_report(self, data: dict[str, Any]) -> None:
        self._report = data
        self._last_updated = self._now()
        logger.info(
            "Report data updated: %d lands, %d worlds at %s",
            len(data.get("l") or []),
            len(data.get("w") or []),
            self._last_updated.isoformat(),
        )

    def set_generating(self, generating: bool) -> None:
        self.generating = generating
        if generating:
            self.progress = 0
            self.progress_message = STARTING_MESSAGE
            logger.info("Report generation started")
        else:
            self.progress = 100

    def set_progress(self, percent: float, message: str | None = None) -> None:
        self.progress = percent
        if message is not None:
            self.progress_message = message

    def snapshot(self) -> ReportSnapshot:
        return ReportSnapshot(
            report=self._report,
            last_updated=self._last_updated,
            generating=self.generating,
            progress=self.progress,
            progress_message=self.progress_message,
        )
