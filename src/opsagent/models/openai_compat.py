"""OpenAI-compatible chat completion client."""

from __future__ import annotations

import json
import time
from typing import Any
from urllib.parse import urlparse, urlunparse

import httpx
from pydantic import ValidationError

from opsagent.errors import (
    APIKeyError,
    ContentFilterError,
    SchemaValidationError,
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
)
from opsagent.structured import StructuredSchema
from opsagent.util.logging import get_logger, redact

logger = get_logger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4-turbo"
JSON_MODE_MODELS = frozenset(
    {"gpt-4-turbo", "gpt-4-turbo-preview", "gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"}
)

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}


class OpenAICompatClient(BaseLLMClient):
    """HTTP client for OpenAI-compatible chat/completions."""

    provider = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str = "https://api.openai.com/v1",
        defaults: LLMOptions | None = None,
        max_response_bytes: int = 2_000_000,
        extra_headers: dict[str, str] | None = None,
        disable_tool_choice: bool = False,
        force_chatcompletions_path: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise APIKeyError(self.provider)
        super().__init__(
            api_key,
            defaults or LLMOptions(temperature=0.3, max_tokens=2000, timeout_ms=30_000),
        )
        normalized = base_url.strip()
        if not normalized.startswith(("http://", "https://")):
            normalized = f"http://{normalized}"
        self.base_url = normalized.rstrip("/")
        self.model = model
        self.max_response_bytes = max_response_bytes
        self.extra_headers = extra_headers or {}
        self.force_chatcompletions_path = force_chatcompletions_path
        self.transport = transport
        self.supports_native_structured_output = not disable_tool_choice

    @property
    def supports_json_mode(self) -> bool:
        return self.model in JSON_MODE_MODELS

    def _build_url(self) -> str:
        parsed = urlparse(self.base_url)
        if self.force_chatcompletions_path:
            forced_path = self.force_chatcompletions_path
            if not forced_path.startswith("/"):
                forced_path = f"/{forced_path}"
            return urlunparse(parsed._replace(path=forced_path, params="", query="", fragment=""))
        path = parsed.path or ""
        if path in {"", "/"}:
            base_path = "/v1"
        else:
            base_path = path.rstrip("/")
            segments = [segment for segment in base_path.split("/") if segment]
            if "v1" not in segments:
                base_path = f"{base_path}/v1"
        if base_path.endswith("/chat/completions"):
            final_path = base_path
        else:
            final_path = f"{base_path}/chat/completions"
        return urlunparse(parsed._replace(path=final_path, params="", query="", fragment=""))

    def _request_payload(self, messages: list[ChatMessage], options: LLMOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": message.role, "content": message.content} for message in messages],
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop_sequences:
            payload["stop"] = options.stop_sequences
        if options.user:
            payload["user"] = options.user
        return payload

    def complete(self, messages: list[ChatMessage], options: LLMOptions | None = None) -> LLMResponse:
        resolved = self.resolve_options(options)
        return self._send(self._request_payload(messages, resolved), resolved)

    def complete_json_text(self, messages: list[ChatMessage], options: LLMOptions | None = None) -> LLMResponse:
        """Plain completion with `response_format=json_object` where the model allows it."""
        resolved = self.resolve_options(options)
        payload = self._request_payload(messages, resolved)
        if self.supports_json_mode:
            payload["response_format"] = {"type": "json_object"}
        return self._send(payload, resolved)

    def complete_native(
        self,
        messages: list[ChatMessage],
        schema: StructuredSchema[Any],
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        resolved = self.resolve_options(options)
        payload = self._request_payload(messages, resolved)
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": schema.name,
                    "description": schema.description,
                    "parameters": schema.json_schema,
                },
            }
        ]
        payload["tool_choice"] = {"type": "function", "function": {"name": schema.name}}
        return self._send(payload, resolved)

    def _send(self, payload: dict[str, Any], options: LLMOptions) -> LLMResponse:
        url = self._build_url()
        headers = {"Authorization": f"Bearer {self._api_key}", **self.extra_headers}
        timeout = httpx.Timeout((options.timeout_ms or 30_000) / 1000)
        started = time.monotonic()
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("openai request failed: %s", redact(str(exc), [self._api_key or ""]))
            raise normalize_error(self.provider, exc) from exc
        latency_ms = int((time.monotonic() - started) * 1000)
        if response.is_error:
            error = normalize_http_error(
                self.provider,
                response.status_code,
                extract_error_message(response.text),
                headers=response.headers,
            )
            logger.warning("openai returned %s (%s)", response.status_code, error.kind.value)
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
            "openai completion model=%s finish=%s tokens=%s latency_ms=%s",
            parsed.model,
            parsed.finish_reason.value,
            parsed.usage.total_tokens,
            latency_ms,
        )
        return parsed

    def _parse_response(self, data: dict[str, Any], latency_ms: int) -> LLMResponse:
        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        finish_reason = _FINISH_REASONS.get(choice.get("finish_reason") or "stop", FinishReason.STOP)
        if finish_reason is FinishReason.CONTENT_FILTER:
            raise ContentFilterError("Response blocked by content filter", provider=self.provider)
        content = message.get("content")
        usage = data.get("usage") or {}
        return LLMResponse(
            id=data.get("id") or "",
            content=content if isinstance(content, str) else "",
            model=data.get("model") or self.model,
            finish_reason=finish_reason,
            usage=TokenUsage(
                prompt_tokens=token_count(usage, "prompt_tokens"),
                completion_tokens=token_count(usage, "completion_tokens"),
                total_tokens=token_count(usage, "total_tokens"),
            ),
            latency_ms=latency_ms,
            tool_call=self._parse_tool_call(message),
        )

    def _parse_tool_call(self, message: dict[str, Any]) -> ToolCall | None:
        tool_calls = message.get("tool_calls") or []
        if not tool_calls:
            return None
        function = tool_calls[0].get("function") or {}
        raw_arguments = function.get("arguments") or "{}"
        try:
            arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else raw_arguments
        except json.JSONDecodeError as exc:
            raise SchemaValidationError(
                f"Function call arguments are not valid JSON: {exc}",
                provider=self.provider,
                cause=exc,
            ) from exc
        if not isinstance(arguments, dict):
            raise SchemaValidationError("Function call arguments must be an object", provider=self.provider)
        return ToolCall(id=tool_calls[0].get("id"), name=function.get("name") or "", arguments=arguments)
