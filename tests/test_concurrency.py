"""Tests for the bounded concurrency runner."""

from __future__ import annotations

import asyncio

from src.dealdocs.documents.concurrency import run_bounded


class TestRunBounded:
    async def test_results_are_in_input_order(self):
        async def worker(item: int, index: int) -> int:
            await asyncio.sleep(0.001 * (5 - index))
            return item * 10

        results = await run_bounded([1, 2, 3, 4, 5], 3, worker)

        assert results == [10, 20, 30, 40, 50]

    async def test_never_exceeds_limit(self):
        active = 0
        peak = 0

        async def worker(item: int, index: int) -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.001)
            active -= 1
            return item

        await run_bounded(list(range(10)), 2, worker)

        assert peak == 2

    async def test_dispatch_starts_in_index_order(self):
        started: list[int] = []

        async def worker(item: str, index: int) -> str:
            started.append(index)
            await asyncio.sleep(0)
            return item

        await run_bounded(["a", "b", "c", "d", "e"], 2, worker)

        assert started == [0, 1, 2, 3, 4]

    async def test_escaping_failure_leaves_none_and_spares_siblings(self):
        async def worker(item: int, index: int) -> int:
            if index == 1:
                raise RuntimeError("worker blew up")
            return item

        results = await run_bounded([7, 8, 9], 3, worker)

        assert results == [7, None, 9]

    async def test_empty_input(self):
        async def worker(item, index):  # pragma: no cover
            raise AssertionError("should not run")

        assert await run_bounded([], 3, worker) == []

    async def test_non_positive_limit_is_clamped_to_one(self):
        active = 0
        peak = 0

        async def worker(item: int, index: int) -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1
            return item

        results = await run_bounded([1, 2, 3], 0, worker)

        assert results == [1, 2, 3]
        assert peak == 1
