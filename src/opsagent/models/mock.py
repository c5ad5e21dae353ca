"""Scripted LLM client for offline runs and tests."""

from __future__ import annotations

import json
from typing import Any

from opsagent.errors import LLMError
from opsagent.models.base import BaseLLMClient
from opsagent.models.messages import ChatMessage, FinishReason, LLMOptions, LLMResponse, ToolCall
from opsagent.structured import StructuredSchema

ScriptedItem = LLMResponse | LLMError | str | dict[str, Any]

DEFAULT_MOCK_DECISION = {
    "reasoning": "Mock client has no scripted response; taking no action.",
    "actions": [{"type": "NO_OP", "reason": "mock client"}],
}


class ScriptedLLMClient(BaseLLMClient):
    """Deterministic client that replays scripted responses in order.

    Strings become text content, dicts become tool-call arguments on the
    native path (and JSON text otherwise), and `LLMError` instances are raised.
    """

    provider = "mock"

    def __init__(
        self,
        scripted: list[ScriptedItem] | None = None,
        supports_native: bool = False,
        model: str = "mock-model",
    ) -> None:
        super().__init__("mock-key", LLMOptions(temperature=0.0, max_tokens=2000, timeout_ms=30_000))
        self._scripted = list(scripted or [])
        self.supports_native_structured_output = supports_native
        self.model = model
        self.calls: list[dict[str, Any]] = []

    def complete(self, messages: list[ChatMessage], options: LLMOptions | None = None) -> LLMResponse:
        self.calls.append({"kind": "text", "messages": messages, "options": self.resolve_options(options)})
        return self._next(native_tool=None)

    def complete_native(
        self,
        messages: list[ChatMessage],
        schema: StructuredSchema[Any],
        options: LLMOptions | None = None,
    ) -> LLMResponse:
        if not self.supports_native_structured_output:
            return super().complete_native(messages, schema, options)
        self.calls.append(
            {"kind": "native", "messages": messages, "options": self.resolve_options(options), "schema": schema}
        )
        return self._next(native_tool=schema.name)

    def _next(self, native_tool: str | None) -> LLMResponse:
        call_id = f"mock-{len(self.calls)}"
        item: ScriptedItem = self._scripted.pop(0) if self._scripted else DEFAULT_MOCK_DECISION
        if isinstance(item, LLMError):
            raise item
        if isinstance(item, LLMResponse):
            return item
        if isinstance(item, dict):
            if native_tool is not None:
                return LLMResponse(
                    id=call_id,
                    model=self.model,
                    finish_reason=FinishReason.TOOL_CALLS,
                    tool_call=ToolCall(id=call_id, name=native_tool, arguments=item),
                )
            return LLMResponse(id=call_id, model=self.model, content=json.dumps(item))
        return LLMResponse(id=call_id, model=self.model, content=item)
