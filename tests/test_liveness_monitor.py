"""Tests for core.liveness_monitor."""

import asyncio
from datetime import datetime, timedelta, timezone

from core.liveness_monitor import LivenessMonitor

from conftest import FakeSocket


class BrokenPingSocket(FakeSocket):
    async def ping(self):
        raise ConnectionResetError("gone")


def _age(registry, cid, seconds):
    registry.get(cid).last_activity = datetime.now(timezone.utc) - timedelta(seconds=seconds)


async def test_idle_open_connection_is_probed_not_removed(registry):
    monitor = LivenessMonitor(registry, interval=15, timeout=30)
    socket = FakeSocket()
    cid = registry.register(socket)
    _age(registry, cid, 45)

    result = await monitor.sweep()

    assert result.probed == [cid]
    assert result.removed == []
    assert socket.pings == 1
    assert cid in registry


async def test_closed_connection_removed_regardless_of_activity(registry):
    monitor = LivenessMonitor(registry, interval=15, timeout=30)
    fresh_closed = FakeSocket()
    fresh_closed.closed = True
    cid = registry.register(fresh_closed)

    result = await monitor.sweep()

    assert result.removed == [cid]
    assert cid not in registry
    assert fresh_closed.pings == 0


async def test_recent_open_connection_left_alone(registry):
    monitor = LivenessMonitor(registry, interval=15, timeout=30)
    socket = FakeSocket()
    cid = registry.register(socket)
    _age(registry, cid, 5)

    result = await monitor.sweep()

    assert result.probed == []
    assert result.removed == []
    assert socket.pings == 0


async def test_unanswered_probe_is_not_a_deadline(registry):
    monitor = LivenessMonitor(registry, interval=15, timeout=30)
    socket = FakeSocket()
    cid = registry.register(socket)
    _age(registry, cid, 120)

    await monitor.sweep()
    await monitor.sweep()

    assert socket.pings == 2
    assert cid in registry

    socket.closed = True
    result = await monitor.sweep()
    assert result.removed == [cid]


async def test_failed_probe_does_not_stop_sweep(registry):
    monitor = LivenessMonitor(registry, interval=15, timeout=30)
    broken = BrokenPingSocket()
    healthy = FakeSocket()
    broken_id = registry.register(broken)
    healthy_id = registry.register(healthy)
    _age(registry, broken_id, 60)
    _age(registry, healthy_id, 60)

    result = await monitor.sweep()

    assert result.probed == [broken_id, healthy_id]
    assert healthy.pings == 1
    assert broken_id in registry


async def test_sweep_mixed_population(registry):
    monitor = LivenessMonitor(registry, interval=15, timeout=30)
    idle, active, dead = FakeSocket(), FakeSocket(), FakeSocket()
    idle_id = registry.register(idle)
    registry.register(active)
    dead.closed = True
    dead_id = registry.register(dead)
    _age(registry, idle_id, 31)

    result = await monitor.sweep()

    assert result.probed == [idle_id]
    assert result.removed == [dead_id]
    assert len(registry) == 2

    status = monitor.get_status()
    assert status["sweeps"] == 1
    assert status["evicted"] == 1
    assert status["last_sweep_at"] is not None


async def test_run_loop_sweeps_until_stopped(registry):
    monitor = LivenessMonitor(registry, interval=0.01, timeout=30)
    dead = FakeSocket()
    dead.closed = True
    cid = registry.register(dead)

    task = asyncio.create_task(monitor.run())
    for _ in range(100):
        if cid not in registry:
            break
        await asyncio.sleep(0.01)

    assert cid not in registry
    assert monitor.running

    monitor.stop()
    await asyncio.wait_for(task, timeout=1)
    assert not monitor.running


async def test_run_loop_cancellation(registry):
    monitor = LivenessMonitor(registry, interval=10, timeout=30)
    task = asyncio.create_task(monitor.run())
    await asyncio.sleep(0)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    assert not monitor.running
