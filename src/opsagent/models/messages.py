"""Provider-neutral request and response types."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class LLMOptions(BaseModel):
    """Per-call options. Unset fields fall back to the client defaults."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stop_sequences: list[str] | None = None
    user: str | None = None
    timeout_ms: int | None = None

    def merged_over(self, defaults: "LLMOptions") -> "LLMOptions":
        return defaults.model_copy(update=self.model_dump(exclude_none=True))


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


def token_count(usage: Any, key: str) -> int:
    """A usage counter from a provider body; absent, null or odd values count as 0."""
    value = usage.get(key) if isinstance(usage, dict) else None
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str
    arguments: dict[str, Any]


class LLMResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str = ""
    model: str
    finish_reason: FinishReason = FinishReason.STOP
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = 0
    tool_call: ToolCall | None = None


def system_and_chat(messages: list[ChatMessage]) -> tuple[str | None, list[ChatMessage]]:
    """Split messages for providers with a single system slot.

    Multiple system messages are joined by a blank line.
    """
    system_parts = [message.content for message in messages if message.role == "system"]
    chat = [message for message in messages if message.role != "system"]
    system = "\n\n".join(system_parts) if system_parts else None
    return system, chat
