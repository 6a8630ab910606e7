"""
EduManage Liveness Monitor

Finds dashboard sockets that died without sending a close frame.

Every ``interval`` seconds the monitor sweeps the registry:

- a socket that reports itself closed is removed, however recent its
  last activity;
- an open socket idle for longer than ``timeout`` gets a probe.

The probe is a courtesy, not a deadline. A peer that ignores it stays
registered until a failed write or the transport flips the socket to
closed, and the next sweep removes it. A half-open socket that never
reports closed can linger; writes to it are cheap and their failures
are swallowed by the Broadcaster.

Usage:
    from core.liveness_monitor import LivenessMonitor

    monitor = LivenessMonitor(registry, interval=15.0, timeout=30.0)
    task = asyncio.create_task(monitor.run())
    ...
    monitor.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from core.connection_registry import ConnectionRegistry


logger = logging.getLogger("edumanage.liveness")


@dataclass
class SweepResult:
    """What one sweep did.

    Attributes:
        probed:   Connection ids that were sent a probe.
        removed:  Connection ids dropped because their socket was closed.
    """
    probed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


class LivenessMonitor:
    """Periodic probe-or-evict sweep over the ConnectionRegistry.

    Args:
        registry: The shared ConnectionRegistry.
        interval: Seconds between sweeps.
        timeout:  Idle seconds before an open connection is probed.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval: float = 15.0,
        timeout: float = 30.0,
    ):
        self._registry = registry
        self._interval = interval
        self._timeout = timeout
        self._running = False
        self._sweeps = 0
        self._total_removed = 0
        self.last_sweep_at: datetime | None = None

        logger.info(
            "LivenessMonitor initialized (interval=%.0fs, timeout=%.0fs)",
            interval, timeout,
        )

    @property
    def running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------

    async def sweep(self) -> SweepResult:
        """Run one pass over a snapshot of the registry."""
        now = datetime.now(timezone.utc)
        result = SweepResult()

        for conn in self._registry.all():
            if not conn.socket.is_open:
                if self._registry.remove(conn.connection_id):
                    result.removed.append(conn.connection_id)
                continue

            idle = (now - conn.last_activity).total_seconds()
            if idle <= self._timeout:
                continue

            try:
                await conn.socket.ping()
            except Exception as e:
                logger.info(
                    "Probe to %s failed after %.0fs idle: %s",
                    conn.connection_id, idle, e,
                )
            else:
                logger.debug("Probed %s after %.0fs idle", conn.connection_id, idle)
            result.probed.append(conn.connection_id)

        self._sweeps += 1
        self._total_removed += len(result.removed)
        self.last_sweep_at = now
        if result.removed:
            logger.info("Liveness sweep evicted %d closed connection(s)", len(result.removed))
        return result

    # -------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------

    async def run(self):
        """Sweep every ``interval`` seconds until stop() or cancellation."""
        self._running = True
        logger.info("Liveness loop started")
        try:
            while self._running:
                await asyncio.sleep(self._interval)
                if not self._running:
                    break
                try:
                    await self.sweep()
                except Exception:
                    logger.exception("Liveness sweep failed")
        finally:
            self._running = False
            logger.info("Liveness loop stopped")

    def stop(self):
        """Ask the loop to exit after its current sleep."""
        self._running = False

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "interval": self._interval,
            "timeout": self._timeout,
            "sweeps": self._sweeps,
            "evicted": self._total_removed,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
        }
