"""
EduManage Dashboard Server

FastAPI backend for the school dashboard. Browsers connect to the /ws
endpoint for live updates; the REST API under /api makes the changes
that get pushed to them.

Socket life cycle:
    accept → register → "connected" welcome frame → receive loop
    (one frame at a time through the MessageRouter) → remove on
    disconnect or error

Run with:
    uvicorn interfaces.dashboard.server:create_app --factory --host 0.0.0.0 --port 5000
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from core.ai_gateway import AIGateway
from core.broadcaster import Broadcaster, encode_frame
from core.config import EduManageConfig, get_config
from core.connection_registry import ConnectionRegistry
from core.liveness_monitor import LivenessMonitor
from core.message_router import MessageRouter
from core.storage import Storage
from core.whatsapp import WhatsAppService


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("edumanage.server")

WELCOME_MESSAGE = "Connected to EduManage Pro WebSocket"


# ---------------------------------------------------------------------------
# Socket adapter
# ---------------------------------------------------------------------------

class StarletteSocket:
    """Gives the core components a framework-free view of a WebSocket."""

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self):
        self._closed = True

    async def send_text(self, payload: str):
        try:
            await self._ws.send_text(payload)
        except Exception:
            self._closed = True
            raise

    async def ping(self):
        # ASGI exposes no control-frame ping; uvicorn's ws_ping_interval
        # covers the transport, this covers the application.
        await self.send_text(encode_frame({"type": "ping"}))


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    config: EduManageConfig | None = None,
    storage: Storage | None = None,
    ai: AIGateway | None = None,
    whatsapp: WhatsAppService | None = None,
) -> FastAPI:
    """Build the FastAPI app and its shared components.

    Anything not passed in is built from ``config`` (the shared
    get_config() instance by default).
    """
    config = config or get_config()
    storage = storage or Storage(db_path=config.database.db_path)
    registry = ConnectionRegistry()
    broadcaster = Broadcaster(registry)
    message_router = MessageRouter(registry, broadcaster, storage)
    liveness = LivenessMonitor(
        registry,
        interval=config.websocket.liveness_interval,
        timeout=config.websocket.liveness_timeout,
    )
    ai = ai or AIGateway.from_config(config, storage)
    whatsapp = whatsapp or WhatsAppService.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the liveness sweep for the life of the server."""
        logger.info("EduManage server starting up")
        liveness_task = asyncio.create_task(liveness.run())
        yield
        liveness.stop()
        liveness_task.cancel()
        try:
            await liveness_task
        except asyncio.CancelledError:
            pass
        await whatsapp.aclose()
        storage.close()
        logger.info("EduManage server shut down")

    app = FastAPI(title="EduManage Pro", lifespan=lifespan)

    # Shared state for the REST routers
    app.state.config = config
    app.state.storage = storage
    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.message_router = message_router
    app.state.liveness = liveness
    app.state.ai = ai
    app.state.whatsapp = whatsapp

    from interfaces.api.routes import public_router, router as api_router
    app.include_router(api_router)
    app.include_router(public_router)

    # -------------------------------------------------------------------
    # Realtime socket
    # -------------------------------------------------------------------

    @app.websocket(config.websocket.path)
    async def dashboard_websocket(websocket: WebSocket):
        """Live update channel for dashboard browsers."""
        await websocket.accept()
        socket = StarletteSocket(websocket)
        connection_id = registry.register(socket)
        logger.info(
            "Dashboard client %s connected from %s",
            connection_id,
            websocket.client.host if websocket.client else "unknown",
        )

        try:
            await broadcaster.send(connection_id, {
                "type": "connected",
                "clientId": connection_id,
                "message": WELCOME_MESSAGE,
            })
            while True:
                # Text and binary frames both carry JSON
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await message_router.route(connection_id, raw)
        except WebSocketDisconnect as e:
            logger.info("Dashboard client %s disconnected (code=%s)", connection_id, e.code)
        except Exception as e:
            logger.error("Dashboard socket %s failed: %s", connection_id, e)
        finally:
            socket.mark_closed()
            registry.remove(connection_id)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "connections": registry.get_status(),
            "liveness": liveness.get_status(),
            "broadcast": broadcaster.get_status(),
            "whatsapp": whatsapp.get_status(),
        }

    return app


# ---------------------------------------------------------------------------
# Direct execution
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "interfaces.dashboard.server:create_app",
        factory=True,
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.server.log_level,
        ws_ping_interval=cfg.websocket.transport_ping_interval,
    )
