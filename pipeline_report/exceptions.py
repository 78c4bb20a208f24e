"""Exception hierarchy for the pipeline report service."""

from __future__ import annotations


class PipelineReportError(Exception):
    """Base class for all service errors."""


class WorldScanError(PipelineReportError):
    """No world batch could be fetched."""

    def __init__(self, message: str, failed_batches: int = 0) -> None:
        super().__init__(message)
        self.failed_batches = failed_batches


class InventoryUnavailable(PipelineReportError):
    """The fast optimization inventory could not be initialized."""


class StorageError(PipelineReportError):
    """The backing store rejected or could not complete a write."""


class ProducerError(PipelineReportError):
    """The queue producer answered with a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Producer returned error: {body}")
        self.status_code = status_code
        self.body = body


class ProducerNotConfigured(PipelineReportError):
    """PRODUCER_URL or PRODUCER_TMP_SECRET is missing."""


class ProducerTimeout(PipelineReportError):
    """The request to the queue producer timed out."""
