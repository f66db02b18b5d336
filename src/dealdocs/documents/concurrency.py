"""Bounded fan-out over a list of items with a self-refilling asyncio pool."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R | None]:
    """Run ``worker(item, index)`` for every item, at most ``limit`` at a time.

    A fixed number of logical workers each pull the next unprocessed index
    from a shared counter until the list is exhausted, so dispatch starts in
    index order while completion order is unspecified. Returns once every
    item has finished.

    The worker is expected to catch and record its own failures. An
    exception that still escapes is logged and leaves ``None`` in that
    item's result slot; it never aborts the remaining items.

    Args:
        items: Items to process.
        limit: Maximum concurrent worker invocations, clamped to
            ``[1, len(items)]``.
        worker: Async callable receiving the item and its index.

    Returns:
        Worker results in input order (``None`` for items whose worker raised).
    """
    total = len(items)
    results: list[R | None] = [None] * total
    if total == 0:
        return results

    pool_size = max(1, min(limit, total))
    next_index = 0

    async def _drain(slot: int) -> None:
        nonlocal next_index
        while next_index < total:
            index = next_index
            next_index += 1
            try:
                results[index] = await worker(items[index], index)
            except Exception as exc:
                logger.error(
                    "bounded_runner.worker_failed",
                    index=index,
                    slot=slot,
                    error=str(exc) or type(exc).__name__,
                )

    await asyncio.gather(*(_drain(slot) for slot in range(pool_size)))
    return results
