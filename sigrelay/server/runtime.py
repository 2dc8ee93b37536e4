from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from sigrelay.core.broadcast import PeerListBroadcaster
from sigrelay.core.config import RelayConfig
from sigrelay.core.liveness import LivenessMonitor
from sigrelay.core.registry import ConnectionRegistry
from sigrelay.core.router import MessageRouter
from sigrelay.core.session import Channel, ClientSession

log = logging.getLogger("sigrelay.server.runtime")


class RelayServer:
    """WebSocket rendezvous relay: registration, routing and liveness."""

    def __init__(self, config: Optional[RelayConfig] = None) -> None:
        self.cfg = config or RelayConfig()
        self.registry = ConnectionRegistry()
        self.broadcaster = PeerListBroadcaster(self.registry)
        self.router = MessageRouter(self.registry, self.broadcaster, bind_sender=self.cfg.bind_sender)
        self.monitor = LivenessMonitor(self.registry, self.broadcaster, interval=self.cfg.heartbeat_secs)

        self._started_at = time.monotonic()
        self._ws_server: Optional[Server] = None
        self._status_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        # keepalive pings belong to the liveness monitor, not the library
        self._ws_server = await serve(
            self._handle_connection,
            self.cfg.host,
            self.cfg.port,
            compression=None,
            ping_interval=None,
            close_timeout=self.cfg.close_timeout_secs,
        )
        log.info("Signaling server listening on ws://%s:%d", self.cfg.host, self.port)

        self.monitor.start()
        self._status_task = asyncio.create_task(self._status_loop(), name="status")

    async def stop(self) -> None:
        """Stop timers, close every registered session, then the listener."""

        if self._status_task is not None:
            self._status_task.cancel()
            await asyncio.gather(self._status_task, return_exceptions=True)
            self._status_task = None
        await self.monitor.stop()

        if self._ws_server is None:
            return
        log.info("Shutting down signaling server...")
        sessions = self.registry.sessions()
        await asyncio.gather(
            *(session.close(1001, "server shutting down") for session in sessions),
            *self.registry.closing,
            return_exceptions=True,
        )

        self._ws_server.close()
        await self._ws_server.wait_closed()
        self._ws_server = None
        log.info("Signaling server stopped")

    @property
    def port(self) -> int:
        if self._ws_server is not None:
            for sock in self._ws_server.sockets:
                return sock.getsockname()[1]
        return self.cfg.port

    def get_status(self) -> Dict[str, Any]:
        return {
            "connected_clients": len(self.registry),
            "clients": self.registry.snapshot_identities(),
            "uptime": time.monotonic() - self._started_at,
        }

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        session = ClientSession(channel=Channel(websocket, send_timeout=self.cfg.send_timeout_secs))
        log.info("New client connected: %s", session.channel.remote)
        try:
            async for raw in websocket:
                try:
                    await self.router.handle(session, raw)
                except Exception:
                    log.exception("Failed to handle message from %s", session.label)
        except ConnectionClosedOK:
            pass
        except ConnectionClosedError as exc:
            log.warning("WebSocket error for %s: %s", session.label, exc)
        finally:
            await self._on_disconnect(session)

    async def _on_disconnect(self, session: ClientSession) -> None:
        if session.identity is None:
            return
        async with self.registry.lock:
            removed = self.registry.unregister(session.identity, session)
        if removed is None:
            return
        log.info("Client disconnected: %s", session.identity)
        await self.broadcaster.broadcast_peer_list()

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.status_interval_secs)
            status = self.get_status()
            log.info(
                "[status] connected clients: %d, uptime: %ds",
                status["connected_clients"],
                int(status["uptime"]),
            )


__all__ = ["RelayServer"]
