"""Base LLM client interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import sha256
from typing import Callable, TypeVar

from opsagent.models.messages import ChatMessage, LLMOptions, LLMResponse
from opsagent.structured import StructuredSchema, enforce_structured_output

T = TypeVar("T")


class BaseLLMClient(ABC):
    """Provider-agnostic chat completion contract.

    Clients never retry on their own; every failure surfaces as an
    `opsagent.errors.LLMError`.
    """

    provider: str = "unknown"
    supports_native_structured_output: bool = False

    def __init__(self, api_key: str | None, defaults: LLMOptions) -> None:
        self._api_key = api_key
        self.defaults = defaults

    @abstractmethod
    def complete(self, messages: list[ChatMessage], options: LLMOptions | None = None) -> LLMResponse:
        """Send a chat request and return the normalized response."""
        raise NotImplementedError

    def complete_native(
        self,
        messages: list[ChatMessage],
        schema: StructuredSchema[T],
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        """Request a forced tool call whose arguments follow `schema`."""
        raise NotImplementedError(f"{self.provider} has no native structured output")

    def complete_json_text(self, messages: list[ChatMessage], options: LLMOptions | None = None) -> LLMResponse:
        """Text completion used by the JSON fallback path."""
        return self.complete(messages, options)

    def complete_with_json(
        self,
        messages: list[ChatMessage],
        schema: StructuredSchema[T],
        options: LLMOptions | None = None,
        before_call: Callable[[], None] | None = None,
    ) -> T:
        return enforce_structured_output(self, messages, schema, options, before_call=before_call)

    def is_ready(self) -> bool:
        return bool(self._api_key)

    @property
    def credential_key(self) -> str:
        digest = sha256((self._api_key or "").encode("utf-8")).hexdigest()[:12]
        return f"{self.provider}:{digest}"

    def resolve_options(self, options: LLMOptions | None) -> LLMOptions:
        if options is None:
            return self.defaults
        return options.merged_over(self.defaults)
