from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterable, Optional, Tuple, Union

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from .proto import encode

log = logging.getLogger("sigrelay.core.session")

Frame = Union[Dict[str, Any], str]

DEFAULT_SEND_TIMEOUT = 10.0


@dataclass(slots=True)
class Channel:
    """Owned handle on one client WebSocket connection.

    Sends and pings are bounded by ``send_timeout``; a peer that stops
    reading long enough to exceed it is dropped.
    """

    websocket: Any
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def is_open(self) -> bool:
        return self.websocket.state is State.OPEN

    @property
    def remote(self) -> str:
        peer = getattr(self.websocket, "remote_address", None)
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)

    async def send(self, frame: Frame) -> bool:
        """Best-effort send. Failures are logged and reported, never raised."""

        if not self.is_open:
            return False
        text = frame if isinstance(frame, str) else encode(frame)
        try:
            await asyncio.wait_for(self._send_locked(text), self.send_timeout)
        except ConnectionClosed as exc:
            log.warning("Send to %s failed: %s", self.remote, exc)
            return False
        except asyncio.TimeoutError:
            log.warning("Send to %s timed out after %.1fs, dropping connection", self.remote, self.send_timeout)
            self.terminate()
            return False
        return True

    async def _send_locked(self, text: str) -> None:
        async with self.send_lock:
            await self.websocket.send(text)

    async def ping(self) -> Optional[Awaitable[Any]]:
        """Send a ping frame, returning the pong waiter."""

        if not self.is_open:
            return None
        try:
            return await asyncio.wait_for(self.websocket.ping(), self.send_timeout)
        except ConnectionClosed:
            return None
        except asyncio.TimeoutError:
            log.warning("Ping to %s timed out, dropping connection", self.remote)
            self.terminate()
            return None

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.websocket.close(code, reason)

    def terminate(self) -> None:
        """Drop the connection without a closing handshake."""

        transport = getattr(self.websocket, "transport", None)
        if transport is not None:
            transport.abort()


async def send_all(deliveries: Iterable[Tuple[Channel, Frame]]) -> int:
    """Send every (channel, frame) pair concurrently; returns successes."""

    results = await asyncio.gather(*(channel.send(frame) for channel, frame in deliveries))
    return sum(1 for ok in results if ok)


@dataclass(slots=True, eq=False)
class ClientSession:
    channel: Channel
    identity: Optional[str] = None
    alive: bool = True

    @property
    def registered(self) -> bool:
        return self.identity is not None

    @property
    def label(self) -> str:
        return self.identity or self.channel.remote

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.channel.close(code, reason)


__all__ = ["Channel", "ClientSession", "send_all", "DEFAULT_SEND_TIMEOUT"]
