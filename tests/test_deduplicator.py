"""
Unit tests for RequestDeduplicator.
"""

import asyncio

import pytest

from smartfetch.services.deduplicator import RequestDeduplicator


class TestRequestDeduplicator:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        dedup = RequestDeduplicator()
        calls = 0
        gate = asyncio.Event()

        async def work():
            nonlocal calls
            calls += 1
            await gate.wait()
            return {"shared": True}

        tasks = [asyncio.create_task(dedup.dedupe("k", work)) for _ in range(5)]
        await asyncio.sleep(0)
        assert dedup.is_in_flight("k")
        gate.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert all(result is results[0] for result in results)
        assert not dedup.is_in_flight("k")

        stats = dedup.get_stats()
        assert stats.started == 1
        assert stats.joined == 4

    @pytest.mark.asyncio
    async def test_failure_is_shared(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            raise RuntimeError("boom")

        tasks = [asyncio.create_task(dedup.dedupe("k", work)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert results[0] is results[1] is results[2]

    @pytest.mark.asyncio
    async def test_new_call_after_completion(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.dedupe("k", work) == 1
        assert await dedup.dedupe("k", work) == 2

    @pytest.mark.asyncio
    async def test_one_waiter_cancelled_others_continue(self):
        dedup = RequestDeduplicator()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return "done"

        first = asyncio.create_task(dedup.dedupe("k", work))
        second = asyncio.create_task(dedup.dedupe("k", work))
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        gate.set()

        assert await second == "done"
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        dedup = RequestDeduplicator()

        async def work():
            await asyncio.sleep(10)

        task = asyncio.create_task(dedup.dedupe("k", work))
        await asyncio.sleep(0)

        assert await dedup.cancel_all() == 1
        with pytest.raises(asyncio.CancelledError):
            await task
        assert dedup.pending_count() == 0
