from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from .session import ClientSession

log = logging.getLogger("sigrelay.core.registry")


class ConnectionRegistry:
    """Identity -> session mapping, at most one live session per identity.

    ``lock`` is the serialization domain shared by dispatch, disconnect
    handling and the liveness sweep. Callers hold it only for registry
    reads, mutations and target selection; sends happen after release.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.closing: Set[asyncio.Task] = set()
        self._sessions: Dict[str, ClientSession] = {}

    def register(self, identity: str, session: ClientSession) -> None:
        """Install ``session`` under ``identity``.

        A different session already holding the identity is removed and its
        close is started in the background before the new one is installed.
        """

        if session.identity is not None and session.identity != identity:
            self.unregister(session.identity, session)

        existing = self._sessions.pop(identity, None)
        if existing is not None and existing is not session:
            log.info("Replacing existing session for %s", identity)
            self._close_later(existing, "replaced by new session")

        session.identity = identity
        self._sessions[identity] = session
        log.info("Registered %s (%s)", identity, session.channel.remote)

    def unregister(self, identity: str, session: Optional[ClientSession] = None) -> Optional[ClientSession]:
        """Remove ``identity``; with ``session`` given, only if it still maps there."""

        current = self._sessions.get(identity)
        if current is None:
            return None
        if session is not None and current is not session:
            return None
        return self._sessions.pop(identity)

    def lookup(self, identity: Optional[str]) -> Optional[ClientSession]:
        if identity is None:
            return None
        return self._sessions.get(identity)

    def snapshot_identities(self) -> List[str]:
        return list(self._sessions)

    def sessions(self) -> List[ClientSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions

    def _close_later(self, session: ClientSession, reason: str) -> None:
        task = asyncio.create_task(session.close(1000, reason))
        self.closing.add(task)
        task.add_done_callback(self._on_closed)

    def _on_closed(self, task: asyncio.Task) -> None:
        self.closing.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("Closing replaced session failed: %s", task.exception())


__all__ = ["ConnectionRegistry"]
