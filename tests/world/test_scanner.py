"""Tests for the sub-grid world scan."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from pipeline_report.exceptions import WorldScanError
from pipeline_report.world.models import EntityKind
from pipeline_report.world.scanner import WorldScanner

API_URL = "https://content.test/entities/active"


def _scanner(client, **kwargs) -> WorldScanner:
    kwargs.setdefault("request_delay", 0)
    return WorldScanner(client, api_url=API_URL, **kwargs)


class TestPartitioning:
    def test_grid_size_is_integer_square_root(self):
        """The sub-grid side is the integer square root of the batch size."""
        assert _scanner(MagicMock(), batch_size=50_000).grid_size == 223
        assert _scanner(MagicMock(), batch_size=10_000).grid_size == 100
        assert _scanner(MagicMock(), batch_size=1).grid_size == 1

    def test_subgrids_cover_square_exactly_once(self):
        """Sixteen 100x100 sub-grids cover the 351x351 world, clamped at 175."""
        scanner = _scanner(MagicMock(), batch_size=10_000)
        subgrids = list(scanner.iter_subgrids())

        assert len(subgrids) == 16
        assert sum(s.cell_count for s in subgrids) == 351 * 351
        assert subgrids[0].start_x == -175
        assert subgrids[-1].end_x == 175
        assert subgrids[-1].end_y == 175
        assert subgrids[-1].cell_count == 51 * 51

    def test_generate_pointers_is_inclusive_and_x_major(self):
        """Pointers cover both ends, x outer and y inner."""
        assert WorldScanner.generate_pointers(0, 1, 5, 6) == ["0,5", "0,6", "1,5", "1,6"]

    def test_rejects_invalid_bounds(self):
        """Inverted bounds and empty batches are refused."""
        with pytest.raises(ValueError):
            _scanner(MagicMock(), min_coord=5, max_coord=4)
        with pytest.raises(ValueError):
            _scanner(MagicMock(), batch_size=0)


class TestScan:
    @staticmethod
    def _client(make_response, failing_pointer: str | None = None) -> MagicMock:
        async def fake_request(method, url, *, timeout, json, headers):
            pointers = json["pointers"]
            if failing_pointer in pointers:
                raise httpx.ReadTimeout("slow")
            return make_response(
                200,
                method=method,
                url=url,
                json=[{"id": f"scene-{pointers[0]}", "type": "scene", "pointers": pointers}],
            )

        client = MagicMock()
        client.request = AsyncMock(side_effect=fake_request)
        return client

    @pytest.mark.asyncio
    async def test_collects_entities_from_every_subgrid(self, make_response):
        """Each sub-grid is posted once and its entities collected."""
        client = self._client(make_response)
        scanner = _scanner(client, batch_size=4, min_coord=0, max_coord=3)

        result = await scanner.scan()

        assert client.request.await_count == 4
        assert result.successful_batches == 4
        assert result.failed_batches == 0
        assert [e.id for e in result.entities] == [
            "scene-0,0",
            "scene-0,2",
            "scene-2,0",
            "scene-2,2",
        ]
        assert all(e.kind is EntityKind.scene for e in result.entities)
        body = client.request.await_args_list[0].kwargs["json"]
        assert body == {"pointers": ["0,0", "0,1", "1,0", "1,1"]}

    @pytest.mark.asyncio
    async def test_failed_subgrid_is_skipped_and_counted(self, make_response):
        """A sub-grid that exhausts its retries is dropped; the scan continues."""
        client = self._client(make_response, failing_pointer="0,0")
        scanner = _scanner(client, batch_size=4, min_coord=0, max_coord=3)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            result = await scanner.scan()

        assert result.failed_batches == 1
        assert result.successful_batches == 3
        assert len(result.entities) == 3
        # Three attempts for the failing batch, one for each other batch
        assert client.request.await_count == 6

    @pytest.mark.asyncio
    async def test_all_batches_failing_raises(self):
        """A scan with no successful sub-grid raises WorldScanError."""
        client = MagicMock()
        client.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
        scanner = _scanner(client, batch_size=4, min_coord=0, max_coord=3)

        with pytest.raises(WorldScanError) as exc_info:
            await scanner.scan()

        assert exc_info.value.failed_batches == 4
        assert "Failed to fetch any world data" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_progress_reaches_100(self, make_response):
        """Progress is reported per sub-grid up to 100%."""
        client = self._client(make_response)
        scanner = _scanner(client, batch_size=4, min_coord=0, max_coord=3)
        progress = []

        await scanner.scan(on_progress=lambda p, m: progress.append(p))

        assert progress == [25.0, 50.0, 75.0, 100.0]

    @pytest.mark.asyncio
    async def test_malformed_entities_are_skipped(self, make_response):
        """Items without an id or that are not objects are dropped; the batch still counts."""
        client = MagicMock()
        client.request = AsyncMock(
            return_value=make_response(
                200,
                method="POST",
                json=[
                    {"type": "scene"},
                    "garbage",
                    ["0,0"],
                    None,
                    {"id": "scene-1", "pointers": ["0,0"]},
                ],
            )
        )
        scanner = _scanner(client, batch_size=1, min_coord=0, max_coord=0)

        result = await scanner.scan()

        assert [e.id for e in result.entities] == ["scene-1"]
        assert result.successful_batches == 1
        assert result.failed_batches == 0

    @pytest.mark.asyncio
    async def test_pauses_between_requests(self, make_response):
        """The scan pauses after each sub-grid request."""
        client = self._client(make_response)
        scanner = _scanner(client, batch_size=4, min_coord=0, max_coord=3, request_delay=0.2)

        with patch("pipeline_report.world.scanner.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await scanner.scan()

        assert mock_sleep.await_count == 4
        mock_sleep.assert_awaited_with(0.2)
