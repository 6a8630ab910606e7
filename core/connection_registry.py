"""
EduManage Connection Registry

Single source of truth for the live dashboard sockets.

Every browser that opens /ws gets a Connection record here. The record
starts anonymous and picks up a claimed user id and role when the client
sends an ``authenticate`` frame. The claim is not verified.

The registry is the only shared mutable state of the realtime layer. It
relies on the event loop being single threaded: none of the methods
below await, so each mutation finishes before another handler runs.
A multi-threaded host would need a lock around ``_connections``.

Usage:
    from core.connection_registry import ConnectionRegistry

    registry = ConnectionRegistry()
    conn_id = registry.register(socket)
    registry.record_identity(conn_id, "u1", "teacher")
    for conn in registry.all():
        ...
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


logger = logging.getLogger("edumanage.registry")


# ---------------------------------------------------------------------------
# Socket handle
# ---------------------------------------------------------------------------

class SocketHandle(Protocol):
    """What the realtime layer needs from a transport socket.

    The dashboard server wraps the framework WebSocket in an adapter that
    satisfies this; tests use an in-memory fake.
    """

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, text: str) -> None: ...

    async def ping(self) -> None: ...


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

@dataclass
class Connection:
    """One live socket plus whatever identity the client claimed.

    Attributes:
        connection_id:  Random token assigned at accept time.
        socket:         The transport handle (see SocketHandle).
        user_id:        Claimed user id, None until authenticated.
        role:           Claimed role (teacher, principal, admin, ...).
        last_activity:  When the last inbound frame arrived.
        connected_at:   When the socket was accepted.
    """
    connection_id: str
    socket: Any
    user_id: str | None = None
    role: str | None = None
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the status endpoint."""
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "role": self.role,
            "authenticated": self.is_authenticated,
            "last_activity": self.last_activity.isoformat(),
            "connected_at": self.connected_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Connection Registry
# ---------------------------------------------------------------------------

class ConnectionRegistry:
    """Admits, stores and removes Connection records.

    Insertion order is kept, so iteration (and therefore broadcast
    delivery order) follows registration order.
    """

    def __init__(self):
        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        logger.info("ConnectionRegistry initialized")

    # -------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------

    def register(self, socket: Any) -> str:
        """Admit a freshly accepted socket as an anonymous connection.

        Args:
            socket: The transport handle for the new connection.

        Returns:
            The new connection id.
        """
        connection_id = uuid.uuid4().hex
        while connection_id in self._connections:
            connection_id = uuid.uuid4().hex

        self._connections[connection_id] = Connection(
            connection_id=connection_id,
            socket=socket,
        )
        logger.info(
            "Connection %s registered (%d active)",
            connection_id, len(self._connections),
        )
        return connection_id

    def record_identity(self, connection_id: str, user_id: str, role: str) -> bool:
        """Attach a claimed identity to a connection.

        Re-authentication simply overwrites the previous claim. A
        connection that has already gone away is ignored: a close racing
        with an authenticate frame is normal.

        Returns:
            True if the connection still existed.
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            logger.debug("Identity for vanished connection %s ignored", connection_id)
            return False

        conn.user_id = user_id
        conn.role = role
        logger.info(
            "Connection %s authenticated as %s (%s)",
            connection_id, user_id, role,
        )
        return True

    def touch(self, connection_id: str):
        """Mark inbound activity on a connection."""
        conn = self._connections.get(connection_id)
        if conn is not None:
            conn.last_activity = datetime.now(timezone.utc)

    def remove(self, connection_id: str) -> bool:
        """Drop a connection. Safe to call more than once.

        Returns:
            True if something was removed.
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False
        logger.info(
            "Connection %s removed (%d active)",
            connection_id, len(self._connections),
        )
        return True

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def all(self) -> list[Connection]:
        """Snapshot of the registered connections.

        The list is a copy; membership may change as soon as the caller
        awaits anything.
        """
        return list(self._connections.values())

    def by_user(self, user_id: str) -> list[Connection]:
        """All connections claiming this user id (one user may hold several)."""
        return [c for c in self._connections.values() if c.user_id == user_id]

    def by_roles(self, roles: list[str] | set[str]) -> list[Connection]:
        """Connections whose claimed role is in ``roles``.

        Connections without a role never match.
        """
        wanted = set(roles)
        return [
            c for c in self._connections.values()
            if c.role is not None and c.role in wanted
        ]

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        """Summary for the status endpoint."""
        authenticated = [c for c in self._connections.values() if c.is_authenticated]
        roles: dict[str, int] = {}
        for conn in authenticated:
            if conn.role:
                roles[conn.role] = roles.get(conn.role, 0) + 1
        return {
            "total": len(self._connections),
            "authenticated": len(authenticated),
            "anonymous": len(self._connections) - len(authenticated),
            "roles": roles,
        }

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __repr__(self) -> str:
        s = self.get_status()
        return (
            f"ConnectionRegistry(total={s['total']}, "
            f"authenticated={s['authenticated']}, anonymous={s['anonymous']})"
        )
