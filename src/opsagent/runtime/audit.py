"""Hash-chained audit trail of decision cycles."""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from hashlib import sha256
import json
from pathlib import Path
import threading
from typing import Any, Callable, Iterable
from urllib.parse import quote

from opsagent.runtime.storage import AuditStore


REDACT_KEYS = ("api_key", "apikey", "access_token", "password", "secret", "authorization")


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def redact(payload: Any, rules: Iterable[str] = REDACT_KEYS) -> Any:
    if isinstance(payload, dict):
        redacted: dict[str, Any] = {}
        for key, value in payload.items():
            if any(rule in str(key).lower() for rule in rules):
                redacted[key] = "[redacted]"
            else:
                redacted[key] = redact(value, rules)
        return redacted
    if isinstance(payload, list):
        return [redact(item, rules) for item in payload]
    if isinstance(payload, str) and len(payload) > 4000:
        return payload[:4000] + "...[truncated]"
    return payload


@dataclass
class AuditEvent:
    timestamp: str
    task_id: str
    cycle_id: str
    event_type: str
    payload: dict[str, Any]
    payload_hash: str
    prev_hash: str
    event_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "cycle_id": self.cycle_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "payload_hash": self.payload_hash,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }


def chain_hash(prev_hash: str, payload_hash: str, event_type: str, timestamp: str) -> str:
    return sha256((prev_hash + payload_hash + event_type + timestamp).encode("utf-8")).hexdigest()


def verify_chain(events: Iterable[dict[str, Any]]) -> bool:
    prev_hash = ""
    for event in events:
        payload_hash = sha256(canonical_json(event["payload"]).encode("utf-8")).hexdigest()
        expected = chain_hash(prev_hash, payload_hash, event["event_type"], event["timestamp"])
        if event["prev_hash"] != prev_hash or event["event_hash"] != expected:
            return False
        prev_hash = expected
    return True


def audit_file_name(task_id: str) -> str:
    """File name for a task's JSONL chain; separators are percent-escaped."""
    return quote(task_id, safe="") + ".jsonl"


@dataclass
class _Chain:
    prev_hash: str
    events: deque[AuditEvent]


class DecisionAuditLog:
    """One hash chain per task, optionally mirrored to JSONL and a store.

    Memory holds a bounded window: the last `max_events_per_task` events of
    the `max_tasks` most recently active tasks. A chain that fell out of
    that window resumes from the store or the JSONL file when one is set.
    """

    def __init__(
        self,
        audit_dir: Path | None = None,
        store: AuditStore | None = None,
        clock: Callable[[], datetime] | None = None,
        max_tasks: int = 1000,
        max_events_per_task: int = 200,
    ) -> None:
        if max_tasks < 1 or max_events_per_task < 1:
            raise ValueError("max_tasks and max_events_per_task must be positive")
        self.audit_dir = audit_dir
        self.store = store
        self.max_tasks = max_tasks
        self.max_events_per_task = max_events_per_task
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._chains: OrderedDict[str, _Chain] = OrderedDict()
        self._lock = threading.Lock()

    def emit(
        self,
        task_id: str,
        cycle_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> AuditEvent:
        safe_payload = redact(payload)
        payload_hash = sha256(canonical_json(safe_payload).encode("utf-8")).hexdigest()
        with self._lock:
            chain = self._chain_for(task_id)
            timestamp = self._clock().isoformat()
            event = AuditEvent(
                timestamp=timestamp,
                task_id=task_id,
                cycle_id=cycle_id,
                event_type=event_type,
                payload=safe_payload,
                payload_hash=payload_hash,
                prev_hash=chain.prev_hash,
                event_hash=chain_hash(chain.prev_hash, payload_hash, event_type, timestamp),
            )
            chain.prev_hash = event.event_hash
            chain.events.append(event)
            if self.audit_dir is not None:
                self._write_jsonl(self.audit_dir, event)
            if self.store:
                self.store.append_event(event.to_dict())
        return event

    def events(self, task_id: str) -> list[AuditEvent]:
        """Events still held in memory for `task_id`, oldest first."""
        with self._lock:
            chain = self._chains.get(task_id)
            return list(chain.events) if chain else []

    def tracked_tasks(self) -> list[str]:
        with self._lock:
            return list(self._chains)

    def _chain_for(self, task_id: str) -> _Chain:
        chain = self._chains.get(task_id)
        if chain is not None:
            self._chains.move_to_end(task_id)
            return chain
        chain = _Chain(self._resume_hash(task_id), deque(maxlen=self.max_events_per_task))
        self._chains[task_id] = chain
        while len(self._chains) > self.max_tasks:
            self._chains.popitem(last=False)
        return chain

    def _resume_hash(self, task_id: str) -> str:
        if self.store is not None:
            last = self.store.last_hash(task_id)
            if last:
                return last
        if self.audit_dir is not None:
            file_path = self.audit_dir / audit_file_name(task_id)
            if file_path.exists():
                lines = file_path.read_text(encoding="utf-8").splitlines()
                if lines:
                    return json.loads(lines[-1])["event_hash"]
        return ""

    def _write_jsonl(self, audit_dir: Path, event: AuditEvent) -> None:
        audit_dir.mkdir(parents=True, exist_ok=True)
        file_path = audit_dir / audit_file_name(event.task_id)
        with file_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
