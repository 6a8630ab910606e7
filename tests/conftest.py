"""
EduManage - Test Configuration and Fixtures
"""
import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from core.ai_gateway import AIGateway
from core.broadcaster import Broadcaster
from core.config import EduManageConfig, reset_config
from core.connection_registry import ConnectionRegistry
from core.message_router import MessageRouter
from core.storage import Storage
from core.whatsapp import WhatsAppService
from interfaces.dashboard.server import create_app


_ENV_VARS = [
    "EDUMANAGE_HOST", "EDUMANAGE_PORT", "EDUMANAGE_LOG_LEVEL", "EDUMANAGE_DB_PATH",
    "EDUMANAGE_LIVENESS_INTERVAL", "EDUMANAGE_LIVENESS_TIMEOUT", "EDUMANAGE_API_KEY",
    "OPENAI_API_KEY", "OPENAI_BASE_URL", "WHATSAPP_API_KEY", "WHATSAPP_BUSINESS_NUMBER",
    "WHATSAPP_API_URL", "WHATSAPP_VERIFY_TOKEN",
]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeSocket:
    """In-memory stand-in for a dashboard socket."""

    def __init__(self, fail_on_send: bool = False):
        self.sent: list[str] = []
        self.pings = 0
        self.closed = False
        self.fail_on_send = fail_on_send

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send_text(self, text: str):
        if self.fail_on_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(text)

    async def ping(self):
        self.pings += 1

    def frames(self) -> list[dict]:
        return [json.loads(t) for t in self.sent]

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames()]


class FakeCompletions:
    """Replays canned chat-completions replies in order.

    A reply that is an Exception is raised instead of returned.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))],
        )


class FakeOpenAI:
    def __init__(self, *replies):
        self.chat = SimpleNamespace(completions=FakeCompletions(replies))

    @property
    def calls(self) -> list[dict]:
        return self.chat.completions.calls

    def queue(self, *replies):
        self.chat.completions.replies.extend(replies)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No real keys or overrides leak in from the developer's shell."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry) -> Broadcaster:
    return Broadcaster(registry)


@pytest.fixture
def storage():
    s = Storage(db_path=":memory:")
    yield s


@pytest.fixture
def router(registry, broadcaster, storage) -> MessageRouter:
    return MessageRouter(registry, broadcaster, storage)


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def ai(storage, fake_openai) -> AIGateway:
    return AIGateway(storage, client=fake_openai)


@pytest.fixture
def whatsapp_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def whatsapp_status() -> dict:
    """Mutable: tests set ``code`` to make the Cloud API reject sends."""
    return {"code": 200}


@pytest.fixture
def whatsapp(whatsapp_requests, whatsapp_status) -> WhatsAppService:
    def handler(request: httpx.Request) -> httpx.Response:
        whatsapp_requests.append(request)
        if whatsapp_status["code"] >= 400:
            return httpx.Response(whatsapp_status["code"], json={"error": {"message": "rejected"}})
        return httpx.Response(200, json={"messages": [{"id": "wamid.TEST"}]})

    return WhatsAppService(
        api_key="test-token",
        business_number="1000200030",
        verify_token="verify-me",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def config(tmp_path) -> EduManageConfig:
    # Missing file: pure defaults
    return EduManageConfig(config_path=tmp_path / "settings.toml")


@pytest.fixture
def app(config, storage, ai, whatsapp):
    return create_app(config=config, storage=storage, ai=ai, whatsapp=whatsapp)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_student(storage):
    """Factory: make_student(student_id="STU002", ...) -> stored row."""
    counter = {"n": 0}

    def _make(**overrides) -> dict:
        counter["n"] += 1
        data = {
            "student_id": f"STU{counter['n']:03d}",
            "first_name": "Asha",
            "last_name": "Rao",
            "parent_phone": "+919800000001",
            "class": "10",
            "section": "A",
            "roll_number": counter["n"],
        }
        data.update(overrides)
        return storage.create_student(data)

    return _make
