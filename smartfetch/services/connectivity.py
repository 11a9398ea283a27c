"""
ConnectivityMonitor - online/offline state with transition listeners.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

Listener = Callable[[bool], Any]


class ConnectivityMonitor:
    """
    Tracks whether the network is reachable and notifies on transitions.

    The state is driven from outside: call ``set_online()`` from whatever
    knows (an OS hook, a health probe), or ``check()`` with a probe coroutine.

    Usage:
        monitor = ConnectivityMonitor()
        unsubscribe = monitor.subscribe(lambda online: print("online:", online))
        monitor.set_online(False)
        monitor.set_online(True)  # listeners fire with True
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener for state changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Update the state, notifying listeners only on an actual change."""
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        for listener in list(self._listeners):
            result = listener(online)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Connectivity listener failed: {task.exception()}")

    async def join(self) -> None:
        """Wait until every listener task started by a transition has finished."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    async def check(self, probe: Callable[[], Awaitable[bool]]) -> bool:
        """Run probe and record its answer. A probe that raises means offline."""
        try:
            online = bool(await probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        self.set_online(online)
        return online
