from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from .proto import make_peer_list
from .registry import ConnectionRegistry
from .session import Channel, send_all

log = logging.getLogger("sigrelay.core.broadcast")


class PeerListBroadcaster:
    """Pushes the current identity list to one channel or to every session."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def plan_broadcast(self) -> Tuple[List[Channel], Dict[str, Any]]:
        """Snapshot targets and the shared frame. Call with ``registry.lock`` held."""

        peers = self.registry.snapshot_identities()
        channels = [s.channel for s in self.registry.sessions() if s.channel.is_open]
        log.info("Broadcasting peer list: %s", peers)
        return channels, make_peer_list(peers)

    async def send_peer_list(self, channel: Channel) -> bool:
        async with self.registry.lock:
            frame = make_peer_list(self.registry.snapshot_identities())
        return await channel.send(frame)

    async def broadcast_peer_list(self) -> int:
        """Send one shared peer-list frame to every open session.

        Closed or closing channels are skipped; eviction is left to the
        liveness monitor. Returns the number of sessions reached.
        """

        async with self.registry.lock:
            channels, frame = self.plan_broadcast()
        return await send_all((channel, frame) for channel in channels)


__all__ = ["PeerListBroadcaster"]
