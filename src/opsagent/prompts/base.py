"""Shared helpers for prompt rendering."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, NamedTuple

from opsagent.models.messages import ChatMessage


class PromptPair(NamedTuple):
    system: str
    user: str

    def combined(self) -> str:
        return f"{self.system}\n\n{self.user}"

    def to_messages(self) -> list[ChatMessage]:
        return [
            ChatMessage(role="system", content=self.system),
            ChatMessage(role="user", content=self.user),
        ]


def iso_utc(value: datetime) -> str:
    """Millisecond UTC timestamp, e.g. 2024-01-15T10:30:00.000Z. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def pretty_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
