from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from opsagent.config import Settings
from opsagent.errors import APIKeyError
from opsagent.factory import build_agent, build_backoff, build_client
from opsagent.models.anthropic import AnthropicClient
from opsagent.models.messages import ChatMessage
from opsagent.models.mock import ScriptedLLMClient
from opsagent.models.openai_compat import OpenAICompatClient
from opsagent.runtime.storage import InMemoryDecisionStore, SqliteAuditStore, SqliteDecisionStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AGENT_DEFAULT_PROVIDER",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "RETRY_DELAYS_MS",
        "AGENT_DECISION_DB",
        "AGENT_AUDIT_DIR",
        "AGENT_AUDIT_DB",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.parametrize(
    ("value", "expected"),
    [("openai", "openai"), ("OpenAI", "openai"), ("claude", "claude"), ("gemini", "claude")],
)
def test_provider_selection_from_env(monkeypatch: pytest.MonkeyPatch, value: str, expected: str) -> None:
    monkeypatch.setenv("AGENT_DEFAULT_PROVIDER", value)
    assert Settings().provider == expected


def test_defaults() -> None:
    settings = Settings()
    assert settings.provider == "claude"
    assert settings.retry_delays_ms == [1000, 5000, 30000]
    assert settings.recent_decisions_limit == 5
    assert settings.short_circuit_overrides is True


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RETRY_DELAYS_MS", "[100, 200]")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
    settings = Settings()
    assert settings.retry_delays_ms == [100, 200]
    assert settings.openai_model == "gpt-4o-mini"
    assert build_backoff(settings).delays_ms == (100, 200)


def test_openai_client_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_DEFAULT_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("OPENAI_EXTRA_HEADERS", '{"X-Org": "acme"}')
    monkeypatch.setenv("OPENAI_BASE_URL", "http://example.com")
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "1", "model": "m", "choices": [{"message": {"content": "hi"}}]})

    client = build_client(Settings(), transport=httpx.MockTransport(handler))
    assert isinstance(client, OpenAICompatClient)
    client.complete([ChatMessage(role="user", content="hello")])
    assert requests[0].headers["X-Org"] == "acme"
    assert requests[0].url == httpx.URL("http://example.com/v1/chat/completions")


def test_anthropic_client_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
    client = build_client(Settings())
    assert isinstance(client, AnthropicClient)
    assert client.defaults.max_tokens == 4096


def test_missing_key_raises() -> None:
    with pytest.raises(APIKeyError):
        build_client(Settings())
    with pytest.raises(APIKeyError):
        build_client(Settings(provider="openai"))


def test_mock_client_needs_no_key() -> None:
    assert isinstance(build_client(Settings(), use_mock=True), ScriptedLLMClient)


def test_build_agent_picks_store(tmp_path: Path) -> None:
    client = ScriptedLLMClient()
    assert isinstance(build_agent(Settings(), client).store, InMemoryDecisionStore)
    agent = build_agent(Settings(decision_db_path=tmp_path / "decisions.db", audit_dir=tmp_path / "audit"), client)
    assert isinstance(agent.store, SqliteDecisionStore)
    assert agent.audit.audit_dir == tmp_path / "audit"


def test_build_agent_mirrors_audit_to_sqlite(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_AUDIT_DB", str(tmp_path / "audit.db"))
    agent = build_agent(Settings(), ScriptedLLMClient())
    assert isinstance(agent.audit.store, SqliteAuditStore)
    agent.audit.emit("task-1", "c1", "cycle_started", {})
    assert [event["event_type"] for event in agent.audit.store.events_for("task-1")] == ["cycle_started"]
    monkeypatch.delenv("AGENT_AUDIT_DB")
    assert build_agent(Settings(), ScriptedLLMClient()).audit.store is None
