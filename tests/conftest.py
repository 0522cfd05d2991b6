"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("SENTINEL_AI_PROVIDER", "local")
os.environ.setdefault("SENTINEL_API_KEY", "")
os.environ.setdefault("SENTINEL_SERVERS_FILE", "")
os.environ.setdefault("SENTINEL_SESSION_LOG_DIR", "")
os.environ.setdefault("SENTINEL_LOCAL_BASE_URL", "http://ollama.test/api")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from tests.mock_ai import ScriptedAI
from tests.mock_ssh import MockSSHManager


@pytest.fixture
def mock_ssh():
    """Provide a fresh MockSSHManager."""
    return MockSSHManager()


@pytest.fixture
def scripted_ai():
    return ScriptedAI()


@pytest.fixture
def test_settings(tmp_path):
    from sentinel.config import Settings

    return Settings(
        sentinel_ai_provider="local",
        sentinel_local_base_url="http://ollama.test/api",
        sentinel_hosted_a_base_url="https://openai.test/v1",
        sentinel_session_log_dir=str(tmp_path / "sessions"),
        sentinel_servers_file="",
        sentinel_provider_backoff_seconds=0.001,
        sentinel_provider_backoff_cap_seconds=0.01,
        sentinel_approval_timeout_seconds=300,
        sentinel_turn_timeout_seconds=5,
    )


@pytest.fixture
def store(test_settings):
    from sentinel.models.server import Server
    from sentinel.services.server_store import ServerStore

    s = ServerStore(test_settings)
    s.add_server(Server(alias="prod", host="10.0.0.5", user="ops"))
    return s


@pytest.fixture
async def ai(test_settings, store, scripted_ai):
    from sentinel.services.ai_client import AIClient

    http = httpx.AsyncClient(transport=httpx.MockTransport(scripted_ai.handler))
    client = AIClient(test_settings, store, http=http)
    yield client
    await client.close()


@pytest.fixture
def make_orchestrator(test_settings, store, ai, mock_ssh):
    """Build an orchestrator wired to the mocks; settings may be overridden."""
    from sentinel.services.chat_transport import OutboxTransport
    from sentinel.services.context_manager import ContextManager
    from sentinel.services.execution_gate import ExecutionGate
    from sentinel.services.orchestrator import Orchestrator
    from sentinel.services.remote_executor import RemoteExecutor
    from sentinel.services.session_log import SessionLog

    def _make(**overrides):
        cfg = test_settings.model_copy(update=overrides)
        return Orchestrator(
            transport=OutboxTransport(),
            client=ai,
            contexts=ContextManager(ai, SessionLog(cfg)),
            gate=ExecutionGate(cfg),
            executor=RemoteExecutor(mock_ssh, cfg),
            store=store,
            cfg=cfg,
        )

    return _make


@pytest.fixture
def orch(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
async def client(orch, store, ai, monkeypatch):
    """Async test client with the mock-backed orchestrator injected."""
    monkeypatch.setattr("sentinel.auth.settings.sentinel_api_key", "")

    import sentinel.routers.chat as rc
    import sentinel.routers.health as rh
    import sentinel.routers.provider as rp
    import sentinel.routers.servers as rs
    import sentinel.routers.sessions as rss

    monkeypatch.setattr(rc, "orchestrator", orch)
    monkeypatch.setattr(rc, "outbox", orch.transport)
    monkeypatch.setattr(rh, "ai_client", ai)
    monkeypatch.setattr(rp, "ai_client", ai)
    monkeypatch.setattr(rs, "server_store", store)
    monkeypatch.setattr(rss, "orchestrator", orch)
    monkeypatch.setattr(rss, "session_log", orch.contexts._sink)

    from sentinel.main import app as fastapi_app

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
