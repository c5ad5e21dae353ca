"""Shared construction helpers for clients, runtime pieces, and agents."""

from __future__ import annotations

import json
from typing import Callable

import httpx

from opsagent.agent import TaskAgent
from opsagent.config import Settings
from opsagent.models.anthropic import AnthropicClient
from opsagent.models.base import BaseLLMClient
from opsagent.models.messages import LLMOptions
from opsagent.models.mock import ScriptedItem, ScriptedLLMClient
from opsagent.models.openai_compat import OpenAICompatClient
from opsagent.runtime.audit import DecisionAuditLog
from opsagent.runtime.backoff import BackoffPolicy
from opsagent.runtime.rate_limit import RateLimiter
from opsagent.runtime.storage import (
    DecisionStore,
    InMemoryDecisionStore,
    SqliteAuditStore,
    SqliteDecisionStore,
)


def _defaults(settings: Settings, max_tokens: int) -> LLMOptions:
    return LLMOptions(
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens or max_tokens,
        timeout_ms=settings.llm_timeout_ms,
    )


def _build_openai(settings: Settings, transport: httpx.BaseTransport | None) -> BaseLLMClient:
    extra_headers = None
    if settings.openai_extra_headers:
        extra_headers = json.loads(settings.openai_extra_headers)
    return OpenAICompatClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        defaults=_defaults(settings, 2000),
        extra_headers=extra_headers,
        disable_tool_choice=settings.openai_disable_tool_choice,
        force_chatcompletions_path=settings.openai_force_chatcompletions_path,
        transport=transport,
    )


def _build_anthropic(settings: Settings, transport: httpx.BaseTransport | None) -> BaseLLMClient:
    return AnthropicClient(
        api_key=settings.anthropic_api_key,
        model=settings.anthropic_model,
        base_url=settings.anthropic_base_url,
        api_version=settings.anthropic_version,
        defaults=_defaults(settings, 4096),
        transport=transport,
    )


PROVIDERS: dict[str, Callable[[Settings, httpx.BaseTransport | None], BaseLLMClient]] = {
    "openai": _build_openai,
    "claude": _build_anthropic,
}


def build_client(
    settings: Settings,
    use_mock: bool = False,
    transport: httpx.BaseTransport | None = None,
    scripted: list[ScriptedItem] | None = None,
) -> BaseLLMClient:
    """Exactly one client per configuration; a missing key raises APIKeyError."""
    if use_mock:
        return ScriptedLLMClient(scripted)
    return PROVIDERS[settings.provider](settings, transport)


def build_backoff(settings: Settings) -> BackoffPolicy:
    return BackoffPolicy(
        max_attempts=settings.retry_max_attempts,
        delays_ms=tuple(settings.retry_delays_ms) or None,
    )


def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_ms=settings.rate_limit_window_ms,
    )


def build_store(settings: Settings) -> DecisionStore:
    if settings.decision_db_path is not None:
        return SqliteDecisionStore(settings.decision_db_path)
    return InMemoryDecisionStore()


def build_audit_log(settings: Settings) -> DecisionAuditLog:
    store = SqliteAuditStore(settings.audit_db_path) if settings.audit_db_path is not None else None
    return DecisionAuditLog(audit_dir=settings.audit_dir, store=store)


def build_agent(
    settings: Settings,
    client: BaseLLMClient,
    *,
    store: DecisionStore | None = None,
    audit: DecisionAuditLog | None = None,
    rate_limiter: RateLimiter | None = None,
) -> TaskAgent:
    return TaskAgent(
        client=client,
        store=store or build_store(settings),
        audit=audit or build_audit_log(settings),
        rate_limiter=rate_limiter or build_rate_limiter(settings),
        backoff=build_backoff(settings),
        recent_limit=settings.recent_decisions_limit,
        short_circuit_overrides=settings.short_circuit_overrides,
    )
