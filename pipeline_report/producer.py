"""
Client for the entity queue producer.

Forwards manual (re)processing requests from the dashboard to the producer
service that feeds the optimization queue. Requests are authenticated with
the shared producer secret in the ``Authorization`` header and are never
retried: a timeout surfaces as :class:`ProducerTimeout`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from pipeline_report.exceptions import (
    ProducerError,
    ProducerNotConfigured,
    ProducerTimeout,
)
from pipeline_report.settings import DEFAULT_CONTENT_SERVER_URL

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

SINGLE_TIMEOUT = 10.0
BULK_TIMEOUT = 55.0
INVALID_ID = "Invalid sceneId"


@dataclass
class QueueResult:
    entity_id: str
    prioritized: bool
    response: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": f"Entity {self.entity_id} queued successfully",
            "prioritized": self.prioritized,
            "result": self.response,
        }


@dataclass
class BulkQueueResult:
    total: int
    queued: int = 0
    failed: int = 0
    succeeded_ids: list[Any] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "total": self.total,
            "queued": self.queued,
            "failed": self.failed,
            "results": {"success": self.succeeded_ids, "failed": self.failures},
        }


def _entity(entity_id: str, entity_type: str) -> dict[str, Any]:
    return {"entityId": entity_id, "entityType": entity_type, "authChain": []}


class ProducerClient:
    """Queue entities for optimization through the producer API.

    Args:
        client: Shared async HTTP client
        base_url: Producer base URL (``PRODUCER_URL``)
        secret: Producer auth secret (``PRODUCER_TMP_SECRET``)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str | None,
        secret: str | None,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/") if base_url else None
        self.secret = secret

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.secret)

    async def _post(self, path: str, payload: dict[str, Any], timeout: float) -> httpx.Response:
        if not self.configured:
            raise ProducerNotConfigured(
                "Producer not configured. Set PRODUCER_URL and PRODUCER_TMP_SECRET "
                "environment variables."
            )
        try:
            response = await self.client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": self.secret},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise ProducerTimeout("Request to producer timed out") from e

        if response.is_error:
            logger.error("Producer error %d: %s", response.status_code, response.text)
            raise ProducerError(response.status_code, response.text)
        return response

    async def queue_entity(
        self,
        entity_id: str,
        entity_type: str = "scene",
        prioritize: bool = False,
        content_server_urls: Sequence[str] | None = None,
    ) -> QueueResult:
        entity_id = entity_id.strip()
        payload = {
            "entity": _entity(entity_id, entity_type),
            "contentServerUrls": list(content_server_urls or [DEFAULT_CONTENT_SERVER_URL]),
            "prioritize": prioritize,
        }
        response = await self._post("/queue-task", payload, SINGLE_TIMEOUT)
        logger.info("Queued %s %s (prioritize=%s)", entity_type, entity_id, prioritize)
        return QueueResult(entity_id=entity_id, prioritized=prioritize, response=response.text)

    async def queue_bulk(
        self,
        entity_ids: Sequence[Any],
        entity_type: str = "scene",
        content_server_urls: Sequence[str] | None = None,
    ) -> BulkQueueResult:
        """Queue many entities in one prioritized request.

        Blank or non-string ids are not sent; each one is counted as failed.
        """
        valid = [
            entity_id.strip()
            for entity_id in entity_ids
            if isinstance(entity_id, str) and entity_id.strip()
        ]
        invalid_count = len(entity_ids) - len(valid)
        urls = list(content_server_urls or [DEFAULT_CONTENT_SERVER_URL])
        payload = {
            "entities": [
                {"entity": _entity(entity_id, entity_type), "contentServerUrls": urls}
                for entity_id in valid
            ],
            "prioritize": True,
        }
        response = await self._post("/queue-tasks", payload, BULK_TIMEOUT)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        results = body.get("results") or {}

        result = BulkQueueResult(
            total=len(entity_ids),
            queued=body.get("queued") or 0,
            failed=(body.get("failed") or 0) + invalid_count,
            succeeded_ids=list(results.get("success") or []),
            failures=list(results.get("failed") or []),
        )
        result.failures.extend(
            {"entityId": "invalid", "error": INVALID_ID} for _ in range(invalid_count)
        )
        logger.info(
            "Bulk queue: %d total, %d queued, %d failed",
            result.total,
            result.queued,
            result.failed,
        )
        return result
