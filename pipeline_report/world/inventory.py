"""Sources for the provisional "has optimized assets" status.

Two interchangeable implementations of :class:`OptimizationInventory`:

* :class:`BucketListingInventory` lists the asset bucket once through the
  S3-compatible ``ListObjectsV2`` API and answers from memory.
* :class:`HttpProbeInventory` sends one ``HEAD`` per entity, ten at a time.

The reconciler tries the listing first and falls back to probing when its
``initialize()`` raises.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Protocol

import httpx

from pipeline_report.exceptions import InventoryUnavailable
from pipeline_report.retry import gather_in_batches

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

ASSET_SUFFIX = "-mobile.zip"
LISTING_TIMEOUT = 60.0
MAX_LISTING_PAGES = 10_000
PROBE_TIMEOUT = 10.0
PROBE_BATCH_SIZE = 10
PROBE_PAUSE = 0.1  # seconds between probe batches


class OptimizationInventory(Protocol):
    """Answers whether optimized output exists for a set of entities."""

    name: str

    async def initialize(self) -> None: ...

    async def check(
        self,
        entity_ids: Sequence[str],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> dict[str, bool]: ...


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


class BucketListingInventory:
    """Enumerate optimized assets from a bucket listing.

    Args:
        client: Shared async HTTP client
        listing_url: S3-compatible bucket endpoint, or None when the fast
            path is not configured
        prefix: Key prefix of the active API version (e.g. ``"v3/"``)
    """

    name = "bucket listing"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        listing_url: str | None,
        prefix: str,
        timeout: float = LISTING_TIMEOUT,
    ) -> None:
        self.client = client
        self.listing_url = listing_url
        self.prefix = prefix
        self.timeout = timeout
        self._optimized: set[str] | None = None

    @property
    def initialized(self) -> bool:
        return self._optimized is not None

    def _parse_page(self, body: bytes | str) -> tuple[list[str], str | None]:
        root = ET.fromstring(body)
        keys: list[str] = []
        token: str | None = None
        truncated = False
        for child in root:
            name = _local_name(child.tag)
            if name == "Contents":
                for field in child:
                    if _local_name(field.tag) == "Key" and field.text:
                        keys.append(field.text)
            elif name == "NextContinuationToken":
                token = child.text
            elif name == "IsTruncated":
                truncated = (child.text or "").strip().lower() == "true"
        return keys, token if truncated else None

    async def initialize(self) -> None:
        """List every key under the prefix; a no-op once listed.

        Raises:
            InventoryUnavailable: When unconfigured, or on any listing failure
        """
        if self._optimized is not None:
            return
        if not self.listing_url:
            raise InventoryUnavailable("Bucket listing URL not configured")

        optimized: set[str] = set()
        token: str | None = None
        try:
            for _ in range(MAX_LISTING_PAGES):
                params = {"list-type": "2", "prefix": self.prefix}
                if token:
                    params["continuation-token"] = token
                response = await self.client.get(
                    self.listing_url, params=params, timeout=self.timeout
                )
                response.raise_for_status()
                keys, token = self._parse_page(response.content)
                for key in keys:
                    name = key.removeprefix(self.prefix)
                    if name.endswith(ASSET_SUFFIX):
                        optimized.add(name.removesuffix(ASSET_SUFFIX))
                if not token:
                    break
        except (httpx.HTTPError, ET.ParseError) as e:
            raise InventoryUnavailable(f"Bucket listing failed: {e}") from e

        self._optimized = optimized
        logger.info("Bucket listing found %d optimized assets", len(optimized))

    def has_optimized_asset(self, entity_id: str) -> bool:
        if self._optimized is None:
            raise InventoryUnavailable("Inventory not initialized")
        return entity_id in self._optimized

    async def check(
        self,
        entity_ids: Sequence[str],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> dict[str, bool]:
        statuses = {entity_id: self.has_optimized_asset(entity_id) for entity_id in entity_ids}
        if on_progress is not None:
            on_progress(len(entity_ids), len(entity_ids))
        return statuses


class HttpProbeInventory:
    """Probe each optimized asset URL with ``HEAD``."""

    name = "HTTP probe"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        asset_url: Callable[[str], str],
        batch_size: int = PROBE_BATCH_SIZE,
        pause: float = PROBE_PAUSE,
        timeout: float = PROBE_TIMEOUT,
    ) -> None:
        self.client = client
        self.asset_url = asset_url
        self.batch_size = batch_size
        self.pause = pause
        self.timeout = timeout

    async def initialize(self) -> None:
        """Probing needs no setup."""

    async def probe(self, entity_id: str) -> bool:
        """True only for a 200 after redirects; errors and other statuses count as missing."""
        try:
            response = await self.client.head(
                self.asset_url(entity_id),
                timeout=self.timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.debug("Probe for %s failed: %s", entity_id, e)
            return False
        return response.status_code == 200

    async def check(
        self,
        entity_ids: Sequence[str],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> dict[str, bool]:
        results = await gather_in_batches(
            list(entity_ids),
            self.probe,
            batch_size=self.batch_size,
            pause=self.pause,
            on_batch=on_progress,
        )
        return dict(zip(entity_ids, results, strict=True))
