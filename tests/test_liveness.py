import asyncio

import pytest
import pytest_asyncio

from sigrelay.core.liveness import LivenessMonitor


@pytest_asyncio.fixture
async def monitor(registry, broadcaster):
    m = LivenessMonitor(registry, broadcaster, interval=30.0)
    yield m
    await m.stop()


async def _drain():
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_first_sweep_marks_suspect_and_pings(registry, monitor, make_session):
    a, a_ws = make_session()
    registry.register("A", a)

    evicted = await monitor.sweep()

    assert evicted == 0
    assert a.alive is False
    assert len(a_ws.pongs) == 1
    # the sweep always ends with a peer-list refresh
    assert a_ws.frames_of("peer-list")[-1]["data"]["peers"] == ["A"]


@pytest.mark.asyncio
async def test_silent_session_evicted_after_one_missed_tick(registry, monitor, make_session):
    a, a_ws = make_session()
    b, b_ws = make_session()
    registry.register("A", a)
    registry.register("B", b)

    await monitor.sweep()
    a_ws.pongs[-1].set_result(0.001)
    await _drain()
    assert a.alive is True

    evicted = await monitor.sweep()

    assert evicted == 1
    assert b_ws.aborted is True
    assert "B" not in registry
    assert registry.lookup("A") is a
    assert a_ws.frames_of("peer-list")[-1]["data"]["peers"] == ["A"]


@pytest.mark.asyncio
async def test_responsive_session_survives_many_ticks(registry, monitor, make_session):
    a, a_ws = make_session()
    registry.register("A", a)

    for _ in range(5):
        await monitor.sweep()
        a_ws.pongs[-1].set_result(0.001)
        await _drain()

    assert registry.lookup("A") is a
    assert a_ws.aborted is False


@pytest.mark.asyncio
async def test_pong_from_replaced_session_is_ignored(registry, monitor, make_session):
    old, old_ws = make_session()
    registry.register("A", old)
    await monitor.sweep()

    new, _ = make_session()
    registry.register("A", new)
    old_ws.pongs[-1].set_result(0.001)
    await _drain()

    assert old.alive is False


@pytest.mark.asyncio
async def test_start_and_stop(registry, broadcaster):
    m = LivenessMonitor(registry, broadcaster, interval=0.01)
    m.start()
    assert m.running
    await asyncio.sleep(0.05)
    await m.stop()
    assert not m.running
