"""Schema-constrained completion with one text fallback."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from opsagent.errors import SchemaValidationError
from opsagent.models.messages import ChatMessage, LLMOptions, LLMResponse
from opsagent.util.json_extract import JsonExtractionError, parse_json_text
from opsagent.util.logging import get_logger

if TYPE_CHECKING:
    from opsagent.models.base import BaseLLMClient

T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)

DEFAULT_JSON_SYSTEM_PROMPT = "You are a helpful assistant that responds in JSON format."
JSON_INSTRUCTION = (
    "\n\nIMPORTANT: You MUST respond with valid JSON only. "
    "No explanations, no markdown formatting, just raw JSON."
    "\n\nExpected JSON structure:\n{schema}"
)


def format_validation_error(exc: ValidationError) -> str:
    """Render pydantic errors as `path: message (got value)` diagnostics."""
    parts = []
    for error in exc.errors():
        path = ".".join(str(item) for item in error.get("loc", ())) or "<root>"
        actual = error.get("input")
        parts.append(f"{path}: {error.get('msg')} (got {json.dumps(actual, default=str)[:120]})")
    return "; ".join(parts)


@dataclass(frozen=True)
class StructuredSchema(Generic[T]):
    """A hand-maintained wire schema bound to the model that validates it."""

    name: str
    description: str
    json_schema: dict[str, Any]
    model: type[T]

    def validate(self, payload: Any, provider: str = "local") -> T:
        try:
            return self.model.model_validate(payload)
        except ValidationError as exc:
            raise SchemaValidationError(
                f"Response does not match schema '{self.name}': {format_validation_error(exc)}",
                provider=provider,
                cause=exc,
            ) from exc

    def render(self) -> str:
        return json.dumps(self.json_schema, indent=2)


def with_json_instruction(messages: list[ChatMessage], schema: StructuredSchema[Any]) -> list[ChatMessage]:
    """Append the JSON-only contract to the system prompt."""
    instruction = JSON_INSTRUCTION.format(schema=schema.render())
    if not any(message.role == "system" for message in messages):
        messages = [ChatMessage(role="system", content=DEFAULT_JSON_SYSTEM_PROMPT), *messages]
    augmented: list[ChatMessage] = []
    last_system = max(idx for idx, message in enumerate(messages) if message.role == "system")
    for idx, message in enumerate(messages):
        if idx == last_system:
            augmented.append(ChatMessage(role="system", content=message.content + instruction))
        else:
            augmented.append(message)
    return augmented


def _payload_from_native(response: LLMResponse, provider: str) -> Any:
    if response.tool_call is not None:
        return response.tool_call.arguments
    try:
        return parse_json_text(response.content)
    except JsonExtractionError as exc:
        raise SchemaValidationError(
            f"Native structured output returned no tool call: {exc}",
            provider=provider,
            cause=exc,
        ) from exc


def enforce_structured_output(
    client: "BaseLLMClient",
    messages: list[ChatMessage],
    schema: StructuredSchema[T],
    options: LLMOptions | None = None,
    before_call: Callable[[], None] | None = None,
) -> T:
    """Return a value validated against `schema`, never raw model text.

    The first attempt uses native tool calling when the client supports it,
    otherwise a plain completion parsed as JSON. A shape failure there
    triggers exactly one text completion carrying an explicit JSON
    instruction. Provider failures propagate as-is. `before_call` runs
    ahead of every provider request, so a caller can meter each one.
    """
    admit = before_call or (lambda: None)
    provider = client.provider
    try:
        admit()
        if client.supports_native_structured_output:
            response = client.complete_native(messages, schema, options)
            return schema.validate(_payload_from_native(response, provider), provider=provider)
        response = client.complete(messages, options)
        return schema.validate(_payload_from_text(response, schema, provider), provider=provider)
    except SchemaValidationError as exc:
        logger.warning("structured output failed for %s, falling back: %s", provider, exc.message)

    admit()
    response = client.complete_json_text(with_json_instruction(messages, schema), options)
    return schema.validate(_payload_from_text(response, schema, provider), provider=provider)


def _payload_from_text(response: LLMResponse, schema: StructuredSchema[Any], provider: str) -> Any:
    try:
        return parse_json_text(response.content)
    except JsonExtractionError as exc:
        raise SchemaValidationError(
            f"Response for schema '{schema.name}' is not valid JSON: {exc}",
            provider=provider,
            cause=exc,
        ) from exc
