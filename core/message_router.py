"""
EduManage Message Router

Parses one inbound socket frame and runs exactly one handler for it.

Inbound frames:
    {"type": "authenticate", "userId": "...", "role": "..."}
    {"type": "subscribe", "channels": ["...", ...]}
    {"type": "ping"}
    {"type": "dashboard_metrics_request"}

Authentication is advisory. Anonymous connections may send every frame
type and get the same answers; the claimed identity only matters for
role- and user-scoped broadcasts. Subscriptions are echoed back but do
not filter anything yet.

A bad frame or a failing handler answers on that connection only and
never closes it.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from core.broadcaster import Broadcaster
from core.connection_registry import ConnectionRegistry


logger = logging.getLogger("edumanage.router")

INVALID_FORMAT = "Invalid message format"
UNKNOWN_TYPE = "Unknown message type"
HANDLER_FAILED = "Failed to process message"


# ---------------------------------------------------------------------------
# Frame models
# ---------------------------------------------------------------------------

class AuthenticateFrame(BaseModel):
    userId: str
    role: str


class SubscribeFrame(BaseModel):
    channels: list[str] = []


class FrameError(Exception):
    """Inbound frame could not be parsed or validated."""


# ---------------------------------------------------------------------------
# Message Router
# ---------------------------------------------------------------------------

class MessageRouter:
    """Dispatches inbound frames for the /ws endpoint.

    Args:
        registry:     Shared ConnectionRegistry.
        broadcaster:  Used to write replies back to the sender.
        storage:      Anything with ``get_dashboard_metrics()``.
    """

    def __init__(self, registry: ConnectionRegistry, broadcaster: Broadcaster, storage: Any):
        self._registry = registry
        self._broadcaster = broadcaster
        self._storage = storage
        self._handlers: dict[str, Callable[[str, dict], Awaitable[None]]] = {
            "authenticate": self._handle_authenticate,
            "subscribe": self._handle_subscribe,
            "ping": self._handle_ping,
            "dashboard_metrics_request": self._handle_metrics_request,
        }

    async def route(self, connection_id: str, raw: str | bytes):
        """Handle one raw frame from ``connection_id``."""
        self._registry.touch(connection_id)

        try:
            message = self._parse(raw)
        except FrameError as e:
            logger.warning("Bad frame from %s: %s", connection_id, e)
            await self._error(connection_id, INVALID_FORMAT)
            return

        frame_type = message.get("type")
        handler = self._handlers.get(frame_type) if isinstance(frame_type, str) else None
        if handler is None:
            logger.info("Unknown frame type %r from %s", frame_type, connection_id)
            await self._error(connection_id, UNKNOWN_TYPE)
            return

        try:
            await handler(connection_id, message)
        except FrameError as e:
            logger.warning("Invalid %s frame from %s: %s", message["type"], connection_id, e)
            await self._error(connection_id, INVALID_FORMAT)
        except Exception:
            logger.exception("Handler for %s failed on %s", message["type"], connection_id)
            await self._error(connection_id, HANDLER_FAILED)

    @staticmethod
    def _parse(raw: str | bytes) -> dict[str, Any]:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FrameError(str(e)) from e
        if not isinstance(message, dict):
            raise FrameError(f"expected a JSON object, got {type(message).__name__}")
        return message

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------

    async def _handle_authenticate(self, connection_id: str, message: dict):
        try:
            frame = AuthenticateFrame.model_validate(message)
        except ValidationError as e:
            raise FrameError(str(e)) from e

        if not self._registry.record_identity(connection_id, frame.userId, frame.role):
            return

        await self._broadcaster.send(connection_id, {
            "type": "authenticated",
            "userId": frame.userId,
            "role": frame.role,
        })
        await self.send_dashboard_metrics(connection_id)

    async def _handle_subscribe(self, connection_id: str, message: dict):
        try:
            frame = SubscribeFrame.model_validate(message)
        except ValidationError as e:
            raise FrameError(str(e)) from e

        # TODO: keep per-connection channels and filter broadcasts by them
        await self._broadcaster.send(connection_id, {
            "type": "subscribed",
            "channels": frame.channels,
        })

    async def _handle_ping(self, connection_id: str, message: dict):
        await self._broadcaster.send(connection_id, {"type": "pong"})

    async def _handle_metrics_request(self, connection_id: str, message: dict):
        await self.send_dashboard_metrics(connection_id)

    # -------------------------------------------------------------------
    # Shared replies
    # -------------------------------------------------------------------

    async def send_dashboard_metrics(self, connection_id: str) -> bool:
        """Push current dashboard metrics to one connection.

        A storage failure is logged and nothing is sent.
        """
        try:
            metrics = self._storage.get_dashboard_metrics()
        except Exception:
            logger.exception("Dashboard metrics unavailable for %s", connection_id)
            return False

        return await self._broadcaster.send(connection_id, {
            "type": "dashboard_metrics",
            "data": metrics,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _error(self, connection_id: str, message: str):
        await self._broadcaster.send(connection_id, {"type": "error", "message": message})
