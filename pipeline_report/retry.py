"""
Bounded-retry HTTP execution and bounded-concurrency fan-out.

Shared by the world scanner, the optimization reconciler and the probe
inventory. Provides:
- Transient error detection (timeouts and 5xx responses)
- Exponential and linear backoff schedules (milliseconds)
- ``request_with_retry`` for a single outbound call with a retry budget
- ``gather_in_batches`` for fan-out/join batches of fixed width

Usage:
    from pipeline_report.retry import exponential_backoff, request_with_retry

    response = await request_with_retry(
        client,
        "POST",
        url,
        json={"pointers": pointers},
        max_attempts=3,
        backoff=exponential_backoff,
        timeout=120.0,
    )
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

__all__ = [
    "MAX_EXPONENTIAL_BACKOFF_MS",
    "exponential_backoff",
    "gather_in_batches",
    "is_retryable_error",
    "linear_backoff",
    "request_with_retry",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAX_EXPONENTIAL_BACKOFF_MS = 10_000


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception is a transient upstream failure.

    Timeouts and 5xx responses are retried; connection refusals, 4xx
    responses and everything else are not.
    """
    if isinstance(exc, httpx.TimeoutException):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def exponential_backoff(attempt: int) -> int:
    """Delay in ms after the ``attempt``-th (0-based) failure: 1s, 2s, 4s ... 10s."""
    return min(1000 * 2**attempt, MAX_EXPONENTIAL_BACKOFF_MS)


def linear_backoff(attempt: int) -> int:
    """Delay in ms after the ``attempt``-th (0-based) failure: 1s, 2s, 3s ..."""
    return 1000 * (attempt + 1)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int,
    backoff: Callable[[int], int],
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one HTTP request, retrying transient failures.

    Responses with status >= 500 are raised as ``httpx.HTTPStatusError`` so
    they count against the retry budget; any other response is returned
    for the caller to interpret.

    Args:
        client: Shared async HTTP client
        method: HTTP method
        url: Target URL
        max_attempts: Total attempts including the first
        backoff: Maps a 0-based failed attempt to a delay in milliseconds
        timeout: Per-attempt timeout in seconds
        **kwargs: Passed through to ``client.request``

    Returns:
        The first response with status < 500

    Raises:
        The last error once the budget is exhausted, or any
        non-retryable error immediately.
    """
    for attempt in range(max_attempts):
        try:
            response = await client.request(method, url, timeout=timeout, **kwargs)
            if response.status_code >= 500:
                response.raise_for_status()
            return response
        except Exception as e:
            if not is_retryable_error(e) or attempt >= max_attempts - 1:
                logger.debug(
                    "%s %s failed after %d attempt(s): %s",
                    method,
                    url,
                    attempt + 1,
                    e,
                )
                raise
            delay_ms = backoff(attempt)
            logger.warning(
                "%s %s failed (%s), retrying in %dms (attempt %d/%d)",
                method,
                url,
                type(e).__name__,
                delay_ms,
                attempt + 1,
                max_attempts,
            )
            await asyncio.sleep(delay_ms / 1000)
    raise ValueError("max_attempts must be at least 1")


async def gather_in_batches(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    batch_size: int,
    pause: float = 0.0,
    on_batch: Callable[[int, int], None] | None = None,
) -> list[R]:
    """Run ``fn`` over ``items`` in fan-out/join batches of ``batch_size``.

    Each batch is awaited in full before the next starts, with ``pause``
    seconds between batches. ``on_batch(done, total)`` is called after
    every batch. Results keep the input order.
    """
    results: list[R] = []
    total = len(items)
    for start in range(0, total, batch_size):
        batch = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(fn(item) for item in batch)))
        if on_batch is not None:
            on_batch(min(start + batch_size, total), total)
        if pause:
            await asyncio.sleep(pause)
    return results
