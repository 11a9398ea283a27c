"""
Unit tests for ConnectivityMonitor.
"""

import pytest

from smartfetch.services.connectivity import ConnectivityMonitor


class TestConnectivityMonitor:
    def test_listeners_fire_only_on_change(self):
        monitor = ConnectivityMonitor()
        seen: list[bool] = []
        monitor.subscribe(seen.append)

        monitor.set_online(True)
        monitor.set_online(False)
        monitor.set_online(False)
        monitor.set_online(True)

        assert seen == [False, True]

    def test_unsubscribe(self):
        monitor = ConnectivityMonitor()
        seen: list[bool] = []
        unsubscribe = monitor.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        monitor.set_online(False)

        assert seen == []

    @pytest.mark.asyncio
    async def test_async_listeners_are_awaited_by_join(self):
        monitor = ConnectivityMonitor(online=False)
        done: list[bool] = []

        async def on_change(online: bool) -> None:
            done.append(online)

        monitor.subscribe(on_change)
        monitor.set_online(True)
        await monitor.join()

        assert done == [True]

    @pytest.mark.asyncio
    async def test_check_with_probe(self):
        monitor = ConnectivityMonitor()

        async def unreachable() -> bool:
            raise OSError("no route to host")

        async def reachable() -> bool:
            return True

        assert await monitor.check(unreachable) is False
        assert not monitor.is_online
        assert await monitor.check(reachable) is True
        assert monitor.is_online
