"""Tests for the queue producer client."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from pipeline_report.exceptions import ProducerError, ProducerNotConfigured, ProducerTimeout
from pipeline_report.producer import BULK_TIMEOUT, SINGLE_TIMEOUT, ProducerClient
from pipeline_report.settings import DEFAULT_CONTENT_SERVER_URL

PRODUCER_URL = "https://producer.test/"


def _producer(client, **kwargs) -> ProducerClient:
    kwargs.setdefault("base_url", PRODUCER_URL)
    kwargs.setdefault("secret", "producer-secret")
    return ProducerClient(client, **kwargs)


class TestQueueEntity:
    @pytest.mark.asyncio
    async def test_posts_single_entity(self, make_response):
        """A single entity is posted with the secret and priority flag."""
        client = MagicMock()
        client.post = AsyncMock(return_value=make_response(200, method="POST", text="queued"))

        result = await _producer(client).queue_entity(" bafy-scene ", prioritize=True)

        client.post.assert_awaited_once_with(
            "https://producer.test/queue-task",
            json={
                "entity": {"entityId": "bafy-scene", "entityType": "scene", "authChain": []},
                "contentServerUrls": [DEFAULT_CONTENT_SERVER_URL],
                "prioritize": True,
            },
            headers={"Authorization": "producer-secret"},
            timeout=SINGLE_TIMEOUT,
        )
        assert result.to_dict() == {
            "success": True,
            "message": "Entity bafy-scene queued successfully",
            "prioritized": True,
            "result": "queued",
        }

    @pytest.mark.asyncio
    async def test_not_configured(self):
        """Without a secret nothing is sent."""
        client = MagicMock()
        client.post = AsyncMock()
        with pytest.raises(ProducerNotConfigured):
            await _producer(client, secret=None).queue_entity("bafy-scene")
        client.post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A timeout surfaces as ProducerTimeout."""
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(ProducerTimeout, match="timed out"):
            await _producer(client).queue_entity("bafy-scene")

    @pytest.mark.asyncio
    async def test_error_status_propagates(self, make_response):
        """A non-2xx answer keeps its status code and body."""
        client = MagicMock()
        client.post = AsyncMock(return_value=make_response(403, method="POST", text="forbidden"))

        with pytest.raises(ProducerError) as exc_info:
            await _producer(client).queue_entity("bafy-scene")

        assert exc_info.value.status_code == 403
        assert str(exc_info.value) == "Producer returned error: forbidden"


class TestQueueBulk:
    @pytest.mark.asyncio
    async def test_invalid_ids_counted_as_failed(self, make_response):
        """Blank ids are not sent and count as failed."""
        client = MagicMock()
        client.post = AsyncMock(
            return_value=make_response(
                200,
                method="POST",
                json={"queued": 2, "failed": 0, "results": {"success": ["a", "b"], "failed": []}},
            )
        )

        result = await _producer(client).queue_bulk(["a", "  ", 7, "b"], entity_type="wearable")

        payload = client.post.await_args.kwargs["json"]
        assert payload["prioritize"] is True
        assert [e["entity"]["entityId"] for e in payload["entities"]] == ["a", "b"]
        assert payload["entities"][0]["entity"]["entityType"] == "wearable"
        assert client.post.await_args.kwargs["timeout"] == BULK_TIMEOUT
        assert result.to_dict() == {
            "success": True,
            "total": 4,
            "queued": 2,
            "failed": 2,
            "results": {
                "success": ["a", "b"],
                "failed": [
                    {"entityId": "invalid", "error": "Invalid sceneId"},
                    {"entityId": "invalid", "error": "Invalid sceneId"},
                ],
            },
        }

    @pytest.mark.asyncio
    async def test_non_json_body_tolerated(self, make_response):
        """A bulk answer that is not JSON counts nothing as queued."""
        client = MagicMock()
        client.post = AsyncMock(return_value=make_response(200, method="POST", text="ok"))

        result = await _producer(client).queue_bulk(["a"])

        assert result.queued == 0
        assert result.failed == 0
        assert result.total == 1
