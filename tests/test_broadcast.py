import pytest
from websockets.protocol import State


@pytest.mark.asyncio
async def test_send_peer_list_to_single_channel(registry, broadcaster, make_session):
    a, _ = make_session()
    asker, asker_ws = make_session()
    registry.register("A", a)

    assert await broadcaster.send_peer_list(asker.channel) is True
    assert asker_ws.frames() == [{"type": "peer-list", "from": "server", "data": {"peers": ["A"]}}]


@pytest.mark.asyncio
async def test_broadcast_skips_closed_channels(registry, broadcaster, make_session):
    a, a_ws = make_session()
    b, b_ws = make_session()
    c, c_ws = make_session()
    for name, session in (("A", a), ("B", b), ("C", c)):
        registry.register(name, session)
    b_ws.state = State.CLOSING

    delivered = await broadcaster.broadcast_peer_list()

    assert delivered == 2
    assert a_ws.frames_of("peer-list")[-1]["data"]["peers"] == ["A", "B", "C"]
    assert c_ws.frames_of("peer-list")[-1]["data"]["peers"] == ["A", "B", "C"]
    assert b_ws.sent == []
    # skipping is not eviction
    assert "B" in registry


@pytest.mark.asyncio
async def test_broadcast_continues_past_failed_send(registry, broadcaster, make_session):
    a, a_ws = make_session()
    b, b_ws = make_session()
    registry.register("A", a)
    registry.register("B", b)
    a_ws.fail_send = True

    delivered = await broadcaster.broadcast_peer_list()

    assert delivered == 1
    assert a_ws.sent == []
    assert b_ws.frames_of("peer-list")[-1]["data"]["peers"] == ["A", "B"]
    # a failed send is reported, not treated as eviction
    assert "A" in registry
