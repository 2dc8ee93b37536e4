from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Set

from .broadcast import PeerListBroadcaster
from .registry import ConnectionRegistry
from .session import ClientSession

log = logging.getLogger("sigrelay.core.liveness")


class LivenessMonitor:
    """Periodic ping sweep over registered sessions.

    Each tick marks every session suspect and pings it; a session still
    suspect on the following tick is terminated and unregistered. A pong
    received in between restores it. The peer list is re-broadcast after
    every sweep.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: PeerListBroadcaster,
        interval: float = 30.0,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._pong_tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="liveness")

    async def stop(self) -> None:
        tasks = list(self._pong_tasks)
        if self._task is not None:
            tasks.append(self._task)
            self._task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pong_tasks.clear()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:  # pragma: no cover - keep the timer alive
                log.exception("Liveness sweep failed")

    async def sweep(self) -> int:
        """Run one tick. Returns the number of evicted sessions."""

        evicted = 0
        probes: List[ClientSession] = []
        async with self.registry.lock:
            for session in self.registry.sessions():
                if not session.alive:
                    log.info("Evicting %s: no pong since last sweep", session.identity)
                    session.channel.terminate()
                    self.registry.unregister(session.identity, session)
                    evicted += 1
                    continue
                session.alive = False
                probes.append(session)

        waiters = await asyncio.gather(*(session.channel.ping() for session in probes))
        for session, waiter in zip(probes, waiters):
            if waiter is not None:
                self._watch_pong(session, waiter)

        await self.broadcaster.broadcast_peer_list()
        return evicted

    def _watch_pong(self, session: ClientSession, waiter: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._await_pong(session, waiter))
        self._pong_tasks.add(task)
        task.add_done_callback(self._pong_tasks.discard)

    async def _await_pong(self, session: ClientSession, waiter: Awaitable[Any]) -> None:
        try:
            await waiter
        except asyncio.CancelledError:
            raise
        except Exception:
            # connection went away before the pong; the next sweep evicts it
            return
        self.on_pong(session)

    def on_pong(self, session: ClientSession) -> None:
        if session.identity is None:
            return
        if self.registry.lookup(session.identity) is session:
            session.alive = True


__all__ = ["LivenessMonitor"]
