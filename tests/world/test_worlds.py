"""Tests for the worlds index fetch and world reconciliation."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from pipeline_report.world.models import Entity, OptimizationReport
from pipeline_report.world.worlds import WorldsFetcher, WorldSummary

INDEX_URL = "https://worlds.test/index"

INDEX = {
    "data": [
        {
            "name": "gallery.dcl.eth",
            "scenes": [
                {
                    "id": "bafy-gallery",
                    "title": "Gallery",
                    "thumbnail": "https://worlds.test/thumb.png",
                    "pointers": ["0,0", "0,1"],
                }
            ],
        },
        {"name": "empty.dcl.eth", "scenes": []},
        {"name": "plaza.dcl.eth", "scenes": [{"id": "bafy-plaza", "pointers": ["0,0"]}]},
        "garbage",
    ],
    "lastUpdated": "2026-03-01T10:00:00Z",
}


class TestWorldSummary:
    def test_from_payload_reads_first_scene(self):
        """A world takes its fields from its first scene."""
        world = WorldSummary.from_payload(INDEX["data"][0])

        assert world == WorldSummary(
            name="gallery.dcl.eth",
            scene_id="bafy-gallery",
            title="Gallery",
            thumbnail="https://worlds.test/thumb.png",
            parcels=2,
        )

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "empty.dcl.eth", "scenes": []},
            {"name": "no-id.dcl.eth", "scenes": [{"title": "x"}]},
            {"scenes": [{"id": "bafy"}]},
            "garbage",
            None,
        ],
    )
    def test_entries_without_usable_scene(self, payload):
        """Entries without a name or scene id are rejected."""
        assert WorldSummary.from_payload(payload) is None

    def test_has_failed_needs_a_failed_report(self):
        """Only a report with success false marks a world failed."""
        world = WorldSummary(name="w", scene_id="s")
        assert not world.has_failed

        world.optimization_report = OptimizationReport(entity_id="s", success=True)
        assert not world.has_failed

        world.optimization_report = OptimizationReport(entity_id="s", success=False)
        assert world.has_failed


class TestWorldsFetcher:
    @pytest.mark.asyncio
    async def test_fetch_skips_worlds_without_scene(self, make_response):
        """The index fetch keeps worlds that have a scene."""
        client = MagicMock()
        client.request = AsyncMock(return_value=make_response(200, url=INDEX_URL, json=INDEX))

        worlds = await WorldsFetcher(client, index_url=INDEX_URL).fetch()

        assert [w.name for w in worlds] == ["gallery.dcl.eth", "plaza.dcl.eth"]
        assert worlds[1].title == ""
        assert worlds[1].parcels == 1
        assert client.request.await_args.kwargs["follow_redirects"] is True

    @pytest.mark.asyncio
    async def test_fetch_accepts_bare_list(self, make_response):
        """An index without the data wrapper is accepted."""
        client = MagicMock()
        client.request = AsyncMock(
            return_value=make_response(200, url=INDEX_URL, json=INDEX["data"][:1])
        )

        worlds = await WorldsFetcher(client, index_url=INDEX_URL).fetch()

        assert [w.scene_id for w in worlds] == ["bafy-gallery"]

    @pytest.mark.asyncio
    async def test_fetch_raises_on_error_status(self, make_response):
        """A 4xx index answer is raised."""
        client = MagicMock()
        client.request = AsyncMock(return_value=make_response(404, url=INDEX_URL))

        with pytest.raises(httpx.HTTPStatusError):
            await WorldsFetcher(client, index_url=INDEX_URL).fetch()

    @pytest.mark.asyncio
    async def test_fetch_retries_server_errors(self, make_response):
        """A 5xx index answer is retried before giving up."""
        client = MagicMock()
        client.request = AsyncMock(
            side_effect=[
                make_response(503, url=INDEX_URL),
                make_response(200, url=INDEX_URL, json=INDEX),
            ]
        )

        with patch("asyncio.sleep", new_callable=AsyncMock):
            worlds = await WorldsFetcher(client, index_url=INDEX_URL).fetch()

        assert client.request.await_count == 2
        assert len(worlds) == 2

    @pytest.mark.asyncio
    async def test_fetch_rejects_index_without_list(self, make_response):
        """An index without a list is rejected."""
        client = MagicMock()
        client.request = AsyncMock(
            return_value=make_response(200, url=INDEX_URL, json={"data": "nope"})
        )

        with pytest.raises(ValueError):
            await WorldsFetcher(client, index_url=INDEX_URL).fetch()

    @pytest.mark.asyncio
    async def test_check_optimization_copies_reconciled_status(self):
        """Each world gets the status and report of its scene."""
        failed = OptimizationReport(entity_id="bafy-plaza", success=False)

        async def fake_reconcile(entities, on_progress=None):
            return [
                Entity(
                    id=entity.id,
                    has_optimized_assets=entity.id == "bafy-gallery",
                    optimization_report=failed if entity.id == "bafy-plaza" else None,
                )
                for entity in entities
            ]

        reconciler = MagicMock()
        reconciler.reconcile = AsyncMock(side_effect=fake_reconcile)
        worlds = [
            WorldSummary(name="gallery.dcl.eth", scene_id="bafy-gallery"),
            WorldSummary(name="plaza.dcl.eth", scene_id="bafy-plaza"),
        ]

        checked = await WorldsFetcher(MagicMock(), index_url=INDEX_URL).check_optimization(
            worlds, reconciler
        )

        assert [w.has_optimized_assets for w in checked] == [True, False]
        assert [w.has_failed for w in checked] == [False, True]
        assert [e.id for e in reconciler.reconcile.await_args.args[0]] == [
            "bafy-gallery",
            "bafy-plaza",
        ]
        # Inputs are left untouched
        assert worlds[0].has_optimized_assets is False
