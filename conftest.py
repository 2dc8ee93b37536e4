import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.protocol import State

from sigrelay.core.broadcast import PeerListBroadcaster
from sigrelay.core.registry import ConnectionRegistry
from sigrelay.core.session import Channel, ClientSession


class FakeWebSocket:
    """In-memory stand-in for a websockets server connection."""

    def __init__(self, port=50000):
        # stalls mimic a peer that stopped reading or never answers a close
        self.stall_send = False
        self.stall_close = False
        self.fail_send = False
        self.remote_address = ("127.0.0.1", port)
        self.state = State.OPEN
        self.sent = []
        self.closed_with = None
        self.aborted = False
        self.pongs = []
        self.transport = self

    async def send(self, text):
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        if self.fail_send:
            raise ConnectionClosedError(None, None)
        if self.stall_send:
            await asyncio.Event().wait()
        self.sent.append(text)

    async def close(self, code=1000, reason=""):
        if self.stall_close:
            await asyncio.Event().wait()
        self.closed_with = (code, reason)
        self.state = State.CLOSED

    def abort(self):
        self.aborted = True
        self.state = State.CLOSED

    async def ping(self):
        waiter = asyncio.get_running_loop().create_future()
        self.pongs.append(waiter)
        return waiter

    def frames(self):
        return [json.loads(text) for text in self.sent]

    def frames_of(self, type_):
        return [f for f in self.frames() if f["type"] == type_]


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry):
    return PeerListBroadcaster(registry)


@pytest.fixture
def make_session():
    """Factory returning (session, fake websocket) pairs."""

    ports = iter(range(50000, 60000))

    def _make(send_timeout=1.0):
        ws = FakeWebSocket(port=next(ports))
        return ClientSession(channel=Channel(ws, send_timeout=send_timeout)), ws

    return _make
