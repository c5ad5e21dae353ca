"""Decision history and audit storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
import json
import sqlite3
import threading
from typing import Any

from opsagent.tasks import DecisionLogEntry


class AuditStore(ABC):
    @abstractmethod
    def append_event(self, event: dict[str, Any]) -> None:
        raise NotImplementedError

    def last_hash(self, task_id: str) -> str | None:
        """Hash of the newest stored event for `task_id`, if the store can tell."""
        return None


class DecisionStore(ABC):
    """Append-only history of authorized decisions, read newest first."""

    @abstractmethod
    def append(self, entry: DecisionLogEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def recent(self, task_id: str, limit: int) -> list[DecisionLogEntry]:
        raise NotImplementedError


class InMemoryDecisionStore(DecisionStore):
    def __init__(self) -> None:
        self._entries: dict[str, list[DecisionLogEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, entry: DecisionLogEntry) -> None:
        with self._lock:
            self._entries[entry.task_id].append(entry)

    def recent(self, task_id: str, limit: int) -> list[DecisionLogEntry]:
        if limit <= 0:
            return []
        with self._lock:
            entries = list(self._entries.get(task_id, ()))
        return entries[::-1][:limit]


class SqliteAuditStore(AuditStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT,
                    cycle_id TEXT,
                    event_type TEXT,
                    timestamp TEXT,
                    payload_json TEXT,
                    payload_hash TEXT,
                    prev_hash TEXT,
                    event_hash TEXT
                )
                """
            )
            conn.commit()

    def append_event(self, event: dict[str, Any]) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO audit_events (
                    task_id, cycle_id, event_type, timestamp,
                    payload_json, payload_hash, prev_hash, event_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.get("task_id"),
                    event.get("cycle_id"),
                    event.get("event_type"),
                    event.get("timestamp"),
                    json.dumps(event.get("payload"), ensure_ascii=False),
                    event.get("payload_hash"),
                    event.get("prev_hash"),
                    event.get("event_hash"),
                ),
            )
            conn.commit()

    def last_hash(self, task_id: str) -> str | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT event_hash FROM audit_events WHERE task_id = ? ORDER BY id DESC LIMIT 1",
                (task_id,),
            ).fetchone()
        return row[0] if row else None

    def events_for(self, task_id: str) -> list[dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT cycle_id, event_type, timestamp, payload_json, prev_hash, event_hash
                FROM audit_events WHERE task_id = ? ORDER BY id
                """,
                (task_id,),
            ).fetchall()
        return [
            {
                "task_id": task_id,
                "cycle_id": row[0],
                "event_type": row[1],
                "timestamp": row[2],
                "payload": json.loads(row[3]),
                "prev_hash": row[4],
                "event_hash": row[5],
            }
            for row in rows
        ]


class SqliteDecisionStore(DecisionStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS decisions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE,
                    task_id TEXT,
                    applied_at TEXT,
                    entry_json TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS decisions_task ON decisions (task_id, seq)")
            conn.commit()

    def append(self, entry: DecisionLogEntry) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO decisions (id, task_id, applied_at, entry_json) VALUES (?, ?, ?, ?)",
                (
                    entry.id,
                    entry.task_id,
                    entry.applied_at.isoformat(),
                    entry.model_dump_json(by_alias=True, exclude_none=True),
                ),
            )
            conn.commit()

    def recent(self, task_id: str, limit: int) -> list[DecisionLogEntry]:
        if limit <= 0:
            return []
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT entry_json FROM decisions WHERE task_id = ? ORDER BY seq DESC LIMIT ?",
                (task_id, limit),
            ).fetchall()
        return [DecisionLogEntry.model_validate_json(row[0]) for row in rows]
