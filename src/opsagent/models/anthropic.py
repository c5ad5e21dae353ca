"""Anthropic Messages API client."""

from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import ValidationError

from opsagent.errors import (
    APIKeyError,
    UnknownLLMError,
    decode_response_body,
    extract_error_message,
    normalize_error,
    normalize_http_error,
)
from opsagent.models.base import BaseLLMClient
from opsagent.models.messages import (
    ChatMessage,
    FinishReason,
    LLMOptions,
    LLMResponse,
    TokenUsage,
    ToolCall,
    token_count,
    system_and_chat,
)
from opsagent.structured import StructuredSchema
from opsagent.util.logging import get_logger, redact

logger = get_logger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
JSON_TOOL_NAME = "respond_with_json"
JSON_TOOL_SYSTEM_SUFFIX = (
    "\n\nYou MUST use the respond_with_json tool to provide your response. "
    "Do not respond with plain text."
)

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
}


class AnthropicClient(BaseLLMClient):
    """HTTP client for the Anthropic /v1/messages endpoint."""

    provider = "claude"
    supports_native_structured_output = True

    def __init__(
        self,
        api_key: str | None,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        base_url: str = "https://api.anthropic.com",
        api_version: str = "2023-06-01",
        defaults: LLMOptions | None = None,
        max_response_bytes: int = 2_000_000,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise APIKeyError(self.provider)
        super().__init__(
            api_key,
            defaults or LLMOptions(temperature=0.3, max_tokens=4096, timeout_ms=30_000),
        )
        self.base_url = base_url.strip().rstrip("/")
        self.model = model
        self.api_version = api_version
        self.max_response_bytes = max_response_bytes
        self.transport = transport

    def _build_url(self) -> str:
        if self.base_url.endswith("/v1"):
            return f"{self.base_url}/messages"
        return f"{self.base_url}/v1/messages"

    def _request_payload(
        self, messages: list[ChatMessage], options: LLMOptions, system_suffix: str = ""
    ) -> dict[str, Any]:
        system, chat = system_and_chat(messages)
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens or 4096,
            "messages": [{"role": message.role, "content": message.content} for message in chat],
        }
        if system:
            payload["system"] = system + system_suffix
        elif system_suffix:
            payload["system"] = system_suffix.strip()
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop_sequences:
            payload["stop_sequences"] = options.stop_sequences
        if options.user:
            payload["metadata"] = {"user_id": options.user}
        return payload

    def complete(self, messages: list[ChatMessage], options: LLMOptions | None = None) -> LLMResponse:
        resolved = self.resolve_options(options)
        return self._send(self._request_payload(messages, resolved), resolved)

    def complete_native(
        self,
        messages: list[ChatMessage],
        schema: StructuredSchema[Any],
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        resolved = self.resolve_options(options)
        payload = self._request_payload(messages, resolved, system_suffix=JSON_TOOL_SYSTEM_SUFFIX)
        payload["tools"] = [
            {
                "name": JSON_TOOL_NAME,
                "description": schema.description,
                "input_schema": schema.json_schema,
            }
        ]
        payload["tool_choice"] = {"type": "tool", "name": JSON_TOOL_NAME}
        return self._send(payload, resolved)

    def _send(self, payload: dict[str, Any], options: LLMOptions) -> LLMResponse:
        headers = {
            "x-api-key": self._api_key or "",
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        timeout = httpx.Timeout((options.timeout_ms or 30_000) / 1000)
        started = time.monotonic()
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(self._build_url(), headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("anthropic request failed: %s", redact(str(exc), [self._api_key or ""]))
            raise normalize_error(self.provider, exc) from exc
        latency_ms = int((time.monotonic() - started) * 1000)
        if response.is_error:
            error = normalize_http_error(
                self.provider,
                response.status_code,
                extract_error_message(response.text),
                headers=response.headers,
            )
            logger.warning("anthropic returned %s (%s)", response.status_code, error.kind.value)
            raise error
        if len(response.content) > self.max_response_bytes:
            raise UnknownLLMError("Response too large", provider=self.provider)
        data = decode_response_body(self.provider, response)
        try:
            parsed = self._parse_response(data, latency_ms)
        except (AttributeError, IndexError, KeyError, TypeError, ValidationError) as exc:
            raise UnknownLLMError(
                f"Malformed response: {type(exc).__name__}: {exc}", provider=self.provider, cause=exc
            ) from exc
        logger.info(
            "anthropic completion model=%s finish=%s tokens=%s latency_ms=%s",
            parsed.model,
            parsed.finish_reason.value,
            parsed.usage.total_tokens,
            latency_ms,
        )
        return parsed

    def _parse_response(self, data: dict[str, Any], latency_ms: int) -> LLMResponse:
        text_parts: list[str] = []
        tool_call: ToolCall | None = None
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text") or "")
            elif block.get("type") == "tool_use" and tool_call is None:
                arguments = block.get("input")
                tool_call = ToolCall(
                    id=block.get("id"),
                    name=block.get("name") or "",
                    arguments=arguments if isinstance(arguments, dict) else {},
                )
        usage = data.get("usage") or {}
        input_tokens = token_count(usage, "input_tokens")
        output_tokens = token_count(usage, "output_tokens")
        return LLMResponse(
            id=data.get("id") or "",
            content="".join(text_parts),
            model=data.get("model") or self.model,
            finish_reason=_STOP_REASONS.get(data.get("stop_reason") or "", FinishReason.STOP),
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            latency_ms=latency_ms,
            tool_call=tool_call,
        )
