"""
Unit tests for OfflineQueue persistence and draining.
"""

import asyncio

import pytest

from smartfetch.datastore import Database, MemoryStorage, SQLStorage
from smartfetch.services.offline_queue import OfflineQueue
from smartfetch.services.types import FetchRequest, RetryPolicy


class Replayer:
    """Replay function that fails for urls listed in failing."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.replayed: list[str] = []

    async def __call__(self, request: FetchRequest) -> None:
        if request.url in self.failing:
            raise RuntimeError(f"still failing: {request.url}")
        self.replayed.append(request.url)


class TestOfflineQueue:
    @pytest.fixture
    def queue(self) -> OfflineQueue:
        return OfflineQueue(MemoryStorage())

    @pytest.mark.asyncio
    async def test_enqueue_and_list_in_order(self, queue: OfflineQueue):
        first = await queue.enqueue(FetchRequest(url="/a", method="POST", body={"n": 1}))
        second = await queue.enqueue(FetchRequest(url="/b", method="POST", body={"n": 2}))

        entries = await queue.list_all()
        assert [e.id for e in entries] == [first, second]
        assert entries[0].request.body == {"n": 1}
        assert entries[0].retry_count == 0
        assert await queue.size() == 2

    @pytest.mark.asyncio
    async def test_drain_replays_fifo_and_dequeues(self, queue: OfflineQueue):
        for url in ("/a", "/b", "/c"):
            await queue.enqueue(FetchRequest(url=url, method="POST"))
        replay = Replayer()

        result = await queue.drain(replay)

        assert replay.replayed == ["/a", "/b", "/c"]
        assert len(result.replayed) == 3
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_failed_replay_stays_queued(self, queue: OfflineQueue):
        entry_id = await queue.enqueue(FetchRequest(url="/a", method="POST"))

        result = await queue.drain(Replayer(failing={"/a"}))

        assert result.failed == [entry_id]
        entry = await queue.get(entry_id)
        assert entry is not None and entry.retry_count == 1

    @pytest.mark.asyncio
    async def test_dropped_after_too_many_failures(self, queue: OfflineQueue):
        entry_id = await queue.enqueue(FetchRequest(url="/a", method="POST"))
        replay = Replayer(failing={"/a"})

        for _ in range(3):
            result = await queue.drain(replay)
            assert result.failed == [entry_id]

        result = await queue.drain(replay)
        assert result.dropped == [entry_id]
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_drain_is_not_reentrant(self, queue: OfflineQueue):
        await queue.enqueue(FetchRequest(url="/a", method="POST"))
        gate = asyncio.Event()

        async def slow_replay(request: FetchRequest) -> None:
            await gate.wait()

        first = asyncio.create_task(queue.drain(slow_replay))
        await asyncio.sleep(0.01)
        assert queue.is_draining

        second = await queue.drain(slow_replay)
        assert second.skipped

        gate.set()
        assert len((await first).replayed) == 1
        assert not queue.is_draining

    @pytest.mark.asyncio
    async def test_drain_stops_when_told(self, queue: OfflineQueue):
        await queue.enqueue(FetchRequest(url="/a", method="POST"))
        await queue.enqueue(FetchRequest(url="/b", method="POST"))
        replay = Replayer()
        checks = iter([True, False])

        await queue.drain(replay, should_continue=lambda: next(checks))

        assert replay.replayed == ["/a"]
        assert await queue.size() == 1

    @pytest.mark.asyncio
    async def test_clear_and_dequeue(self, queue: OfflineQueue):
        first = await queue.enqueue(FetchRequest(url="/a", method="POST"))
        await queue.enqueue(FetchRequest(url="/b", method="POST"))

        await queue.dequeue(first)
        await queue.dequeue("unknown")
        assert await queue.size() == 1

        await queue.clear()
        assert await queue.list_all() == []

    @pytest.mark.asyncio
    async def test_survives_restart_with_sql_storage(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"
        request = FetchRequest(
            url="/orders",
            method="POST",
            body={"item": "book", "qty": 2},
            headers={"X-Trace": "1"},
            retry=RetryPolicy(max_retries=1, delay=0.5),
        )

        storage = SQLStorage(Database(url), namespace="offline", owns_database=True)
        entry_id = await OfflineQueue(storage).enqueue(request)
        await storage.close()

        reopened = SQLStorage(Database(url), namespace="offline", owns_database=True)
        try:
            entries = await OfflineQueue(reopened).list_all()
        finally:
            await reopened.close()

        assert [e.id for e in entries] == [entry_id]
        restored = entries[0].request
        assert restored.body == {"item": "book", "qty": 2}
        assert restored.headers == {"X-Trace": "1"}
        assert restored.retry == RetryPolicy(max_retries=1, delay=0.5)
