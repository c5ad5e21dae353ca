"""Normalized provider error taxonomy."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, ClassVar, Mapping

import httpx


DEFAULT_RETRY_AFTER_MS = 60_000
CONTENT_FILTER_KEYWORDS = ("content", "policy", "filter")


class ErrorKind(str, Enum):
    """Closed set of failure categories every provider maps into."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    CONTENT_FILTER = "content_filter"
    OVERLOAD = "overload"
    SCHEMA_VALIDATION = "schema_validation"
    BAD_REQUEST = "bad_request"
    SERVER_ERROR = "server_error"
    CONNECTION = "connection"
    UNKNOWN = "unknown"


class LLMError(Exception):
    """Base class for normalized LLM failures."""

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN
    default_retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        retryable: bool | None = None,
        retry_after_ms: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after_ms = retry_after_ms
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider": self.provider,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "retry_after_ms": self.retry_after_ms,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, provider={self.provider!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )


class RateLimitError(LLMError):
    kind = ErrorKind.RATE_LIMIT
    default_retryable = True


class AuthenticationError(LLMError):
    kind = ErrorKind.AUTH


class APIKeyError(AuthenticationError):
    """Raised at construction time when a provider has no credentials."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"API key not configured for {provider}. Set the provider API key environment variable.",
            provider=provider,
        )


class ContentFilterError(LLMError):
    kind = ErrorKind.CONTENT_FILTER


class ModelOverloadedError(LLMError):
    kind = ErrorKind.OVERLOAD
    default_retryable = True


class SchemaValidationError(LLMError):
    kind = ErrorKind.SCHEMA_VALIDATION


class BadRequestError(LLMError):
    kind = ErrorKind.BAD_REQUEST


class ServerError(LLMError):
    kind = ErrorKind.SERVER_ERROR
    default_retryable = True


class ProviderConnectionError(LLMError):
    kind = ErrorKind.CONNECTION
    default_retryable = True


class UnknownLLMError(LLMError):
    kind = ErrorKind.UNKNOWN


def parse_retry_after_ms(headers: Mapping[str, str] | None) -> int:
    """Read the provider retry hint in milliseconds, defaulting to one minute."""
    if not headers:
        return DEFAULT_RETRY_AFTER_MS
    lowered = {key.lower(): value for key, value in headers.items()}
    raw_ms = lowered.get("retry-after-ms")
    if raw_ms:
        try:
            return max(0, int(float(raw_ms)))
        except ValueError:
            pass
    raw_seconds = lowered.get("retry-after")
    if raw_seconds:
        try:
            return max(0, int(float(raw_seconds) * 1000))
        except ValueError:
            pass
    return DEFAULT_RETRY_AFTER_MS


def extract_error_message(body_text: str) -> str:
    """Pull `error.message` out of a provider JSON error body."""
    try:
        data = json.loads(body_text)
    except (json.JSONDecodeError, TypeError):
        return body_text[:500]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(data.get("message"), str):
            return data["message"]
    return body_text[:500]


def normalize_http_error(
    provider: str,
    status_code: int,
    message: str,
    headers: Mapping[str, str] | None = None,
    cause: BaseException | None = None,
) -> LLMError:
    """Map an HTTP failure status to a normalized error."""
    common: dict[str, Any] = {"provider": provider, "status_code": status_code, "cause": cause}
    if status_code == 429:
        return RateLimitError(
            message or "Rate limit exceeded",
            retry_after_ms=parse_retry_after_ms(headers),
            **common,
        )
    if status_code == 401:
        return AuthenticationError(message or "Invalid API key", **common)
    if status_code == 403:
        return AuthenticationError("Invalid API key or insufficient permissions", **common)
    if status_code == 400:
        lowered = (message or "").lower()
        if any(keyword in lowered for keyword in CONTENT_FILTER_KEYWORDS):
            return ContentFilterError(message, **common)
        return BadRequestError(message or "Bad request", **common)
    if status_code in {503, 529}:
        return ModelOverloadedError(message or "Model is overloaded", **common)
    if status_code >= 500:
        return ServerError(message or f"Server error {status_code}", **common)
    return UnknownLLMError(message or f"Unexpected status {status_code}", **common)


def normalize_error(provider: str, exc: BaseException) -> LLMError:
    """Normalize any raised exception. Already-normalized errors pass through."""
    if isinstance(exc, LLMError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProviderConnectionError(f"Request timed out: {exc}", provider=provider, cause=exc)
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return normalize_http_error(
            provider,
            response.status_code,
            extract_error_message(response.text),
            headers=response.headers,
            cause=exc,
        )
    if isinstance(exc, httpx.TransportError):
        return ProviderConnectionError(f"Connection failed: {exc}", provider=provider, cause=exc)
    return UnknownLLMError(str(exc) or type(exc).__name__, provider=provider, cause=exc)


def decode_response_body(provider: str, response: httpx.Response) -> dict[str, Any]:
    """Decode a successful provider body into a JSON object or raise UnknownLLMError."""
    try:
        data = response.json()
    except ValueError as exc:
        raise UnknownLLMError("Malformed JSON response", provider=provider, cause=exc) from exc
    if not isinstance(data, dict):
        raise UnknownLLMError(
            f"Malformed response: expected a JSON object, got {type(data).__name__}", provider=provider
        )
    return data
