"""
EduManage Broadcaster

Serializes frames and writes them to registered sockets. Used for both
server-originated event pushes (attendance_update, fee_update, ...) and
the direct replies the message router sends back to one client.

Delivery is at-most-once with no replay. A send that fails is logged,
the broken connection is dropped from the registry, and delivery carries
on with the rest of the snapshot.

Usage:
    from core.broadcaster import Broadcaster

    broadcaster = Broadcaster(registry)
    await broadcaster.broadcast(EventNotification(EventType.FEE_UPDATE, fee))
    await broadcaster.broadcast_to_roles(note, ["admin", "principal"])
    await broadcaster.send_to_user(note, "u1")
"""

import json
import logging
from typing import Any, Iterable

from core.connection_registry import Connection, ConnectionRegistry
from core.notifications import EventNotification


logger = logging.getLogger("edumanage.broadcast")


def encode_frame(frame: dict[str, Any]) -> str:
    """JSON-encode an outbound frame. Unknown types fall back to str()."""
    return json.dumps(frame, default=str)


class Broadcaster:
    """Pushes frames to some or all registered connections.

    Args:
        registry: The shared ConnectionRegistry.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry
        self._delivered = 0
        self._failed = 0

    # -------------------------------------------------------------------
    # Event fan-out
    # -------------------------------------------------------------------

    async def broadcast(self, notification: EventNotification) -> int:
        """Deliver to every registered connection, anonymous ones included.

        Returns:
            Number of connections the frame was written to.
        """
        return await self._deliver(notification, self._registry.all())

    async def broadcast_to_roles(
        self,
        notification: EventNotification,
        roles: Iterable[str],
    ) -> int:
        """Deliver only to connections whose claimed role is in ``roles``."""
        return await self._deliver(notification, self._registry.by_roles(set(roles)))

    async def send_to_user(self, notification: EventNotification, user_id: str) -> int:
        """Deliver to every connection claiming ``user_id``."""
        return await self._deliver(notification, self._registry.by_user(user_id))

    async def _deliver(
        self,
        notification: EventNotification,
        targets: list[Connection],
    ) -> int:
        payload = encode_frame(notification.to_frame())
        sent = 0
        for conn in targets:
            if await self._write(conn, payload):
                sent += 1
        logger.debug(
            "%s delivered to %d/%d connection(s)",
            notification.type.value, sent, len(targets),
        )
        return sent

    # -------------------------------------------------------------------
    # Direct replies
    # -------------------------------------------------------------------

    async def send(self, connection_id: str, frame: dict[str, Any]) -> bool:
        """Send one frame to one connection.

        Returns:
            False if the connection is gone, closed, or the write failed.
        """
        conn = self._registry.get(connection_id)
        if conn is None:
            return False
        return await self._write(conn, encode_frame(frame))

    # -------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------

    async def _write(self, conn: Connection, payload: str) -> bool:
        if not conn.socket.is_open:
            logger.debug("Skipping closed connection %s", conn.connection_id)
            return False
        try:
            await conn.socket.send_text(payload)
        except Exception as e:
            self._failed += 1
            logger.warning(
                "Send to connection %s failed (%s), dropping it",
                conn.connection_id, e,
            )
            self._registry.remove(conn.connection_id)
            return False
        self._delivered += 1
        return True

    def get_status(self) -> dict[str, int]:
        return {"delivered": self._delivered, "failed": self._failed}
