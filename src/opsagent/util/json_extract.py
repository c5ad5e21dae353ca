"""Strict JSON extraction from model text output."""

from __future__ import annotations

import json
import re
from typing import Any


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class JsonExtractionError(ValueError):
    """Raised when no parseable JSON value can be found in text."""


def strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json_block(text: str) -> str:
    """Return the first balanced JSON object or array in `text`."""
    start_index = None
    for idx, char in enumerate(text):
        if char in "{[":
            start_index = idx
            break
    if start_index is None:
        raise JsonExtractionError("No JSON object or array found")
    depth = 0
    in_string = False
    escape = False
    for idx in range(start_index, len(text)):
        char = text[idx]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
            continue
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return text[start_index : idx + 1]
    raise JsonExtractionError("Unbalanced JSON braces")


def parse_json_text(text: str | None) -> Any:
    """Parse model output as JSON without repairing or guessing.

    Markdown code fences and surrounding prose are dropped; the JSON itself
    must be valid as written.
    """
    if not text or not text.strip():
        raise JsonExtractionError("Empty response")
    stripped = strip_fences(text)
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass
    block = extract_json_block(stripped)
    try:
        return json.loads(block)
    except json.JSONDecodeError as exc:
        raise JsonExtractionError(f"Invalid JSON: {exc}") from exc
