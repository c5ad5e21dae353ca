from __future__ import annotations

from datetime import datetime, timezone
import json

import pytest

from opsagent.errors import AuthenticationError, RateLimitError, ServerError
from opsagent.runtime.audit import DecisionAuditLog, redact, verify_chain
from opsagent.runtime.backoff import BackoffPolicy, call_with_backoff
from opsagent.runtime.rate_limit import RateLimiter
from opsagent.runtime.storage import InMemoryDecisionStore, SqliteAuditStore, SqliteDecisionStore
from opsagent.tasks import AgentDecision, DecisionLogEntry


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _flaky(errors):
    calls = []

    def fn():
        calls.append(len(calls))
        if errors:
            raise errors.pop(0)
        return "ok"

    return fn, calls


def _entry(entry_id: str, task_id: str = "task-1", hour: int = 9) -> DecisionLogEntry:
    return DecisionLogEntry(
        id=entry_id,
        task_id=task_id,
        decision=AgentDecision.model_validate(
            {"reasoning": f"decision {entry_id}", "actions": [{"type": "SET_STATUS", "toStatus": "DONE"}]}
        ),
        applied_at=datetime(2024, 1, 15, hour, 0, tzinfo=timezone.utc),
    )


def test_backoff_retries_transient_errors_with_fixed_delays():
    sleeps = []
    fn, calls = _flaky([ServerError("down", provider="openai"), ServerError("down", provider="openai")])
    assert call_with_backoff(fn, BackoffPolicy(), sleep=sleeps.append) == "ok"
    assert len(calls) == 3
    assert sleeps == [1.0, 5.0]


def test_backoff_prefers_retry_after_hint():
    sleeps = []
    retries = []
    fn, _ = _flaky([RateLimitError("slow", provider="claude", retry_after_ms=2500)])
    call_with_backoff(fn, BackoffPolicy(), sleep=sleeps.append, on_retry=lambda exc, n, d: retries.append((n, d)))
    assert sleeps == [2.5]
    assert retries == [(1, 2500)]


def test_backoff_does_not_retry_permanent_errors():
    sleeps = []
    fn, calls = _flaky([AuthenticationError("bad key", provider="openai", status_code=401)])
    with pytest.raises(AuthenticationError):
        call_with_backoff(fn, BackoffPolicy(), sleep=sleeps.append)
    assert len(calls) == 1
    assert sleeps == []


def test_backoff_gives_up_after_max_attempts():
    fn, calls = _flaky([ServerError("down", provider="openai") for _ in range(5)])
    with pytest.raises(ServerError):
        call_with_backoff(fn, BackoffPolicy(max_attempts=2), sleep=lambda _: None)
    assert len(calls) == 2


def test_backoff_delay_schedules():
    fixed = BackoffPolicy(delays_ms=(100, 200))
    assert [fixed.delay_ms(i) for i in range(4)] == [100, 200, 200, 200]
    exponential = BackoffPolicy.exponential(initial_delay_ms=1000, max_delay_ms=5000)
    assert [exponential.delay_ms(i) for i in range(4)] == [1000, 2000, 4000, 5000]
    with pytest.raises(ValueError):
        BackoffPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        BackoffPolicy(delays_ms=())


def test_rate_limiter_window():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_ms=1000, clock=clock)
    assert limiter.check("k").remaining == 1
    assert limiter.check("k").allowed
    denied = limiter.check("k")
    assert not denied.allowed
    assert denied.retry_after_ms == 1000
    clock.advance(1.0)
    assert limiter.check("k").allowed


def test_rate_limiter_evicts_idle_keys():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_ms=1000, clock=clock)
    limiter.check("a")
    limiter.check("b")
    clock.advance(2.0)
    limiter.check("c")
    assert limiter.tracked_keys() == ["c"]


def test_rate_limiter_penalize_blocks_key():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_ms=1000, clock=clock)
    limiter.penalize("k", 3000)
    blocked = limiter.check("k")
    assert not blocked.allowed
    assert blocked.retry_after_ms == 3000
    clock.advance(1.5)
    assert not limiter.check("k").allowed
    # still blocked, so the expired window is kept
    assert "k" in limiter.tracked_keys()
    clock.advance(2.0)
    assert limiter.check("k").allowed
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)


def test_in_memory_store_newest_first():
    store = InMemoryDecisionStore()
    for idx in range(7):
        store.append(_entry(f"d{idx}"))
    store.append(_entry("other", task_id="task-2"))
    assert [entry.id for entry in store.recent("task-1", 5)] == ["d6", "d5", "d4", "d3", "d2"]
    assert store.recent("task-1", 0) == []
    assert store.recent("missing", 5) == []


def test_sqlite_decision_store_round_trip(tmp_path):
    store = SqliteDecisionStore(tmp_path / "decisions.db")
    store.append(_entry("d1", hour=9))
    store.append(_entry("d2", hour=10))
    recent = store.recent("task-1", 5)
    assert [entry.id for entry in recent] == ["d2", "d1"]
    assert recent[0].decision.actions[0].to_status == "DONE"
    assert recent[0].applied_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    reopened = SqliteDecisionStore(tmp_path / "decisions.db")
    assert len(reopened.recent("task-1", 1)) == 1


def test_audit_chain_per_task(tmp_path):
    store = SqliteAuditStore(tmp_path / "audit.db")
    log = DecisionAuditLog(audit_dir=tmp_path / "audit", store=store)
    log.emit("task-1", "c1", "cycle_started", {"event": "task.created"})
    log.emit("task-2", "c2", "cycle_started", {"event": "task.created"})
    log.emit("task-1", "c1", "decision_accepted", {"api_key": "sk-secret", "effects": []})

    events = log.events("task-1")
    assert [event.event_type for event in events] == ["cycle_started", "decision_accepted"]
    assert events[0].prev_hash == ""
    assert events[1].prev_hash == events[0].event_hash
    assert events[1].payload["api_key"] == "[redacted]"
    assert verify_chain(event.to_dict() for event in events)
    assert verify_chain(store.events_for("task-1"))
    assert log.events("task-2")[0].prev_hash == ""

    lines = (tmp_path / "audit" / "task-1.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event_type"] for line in lines] == ["cycle_started", "decision_accepted"]


def test_verify_chain_detects_tampering():
    log = DecisionAuditLog()
    log.emit("task-1", "c1", "cycle_started", {"n": 1})
    log.emit("task-1", "c1", "decision_rejected", {"n": 2})
    dumped = [event.to_dict() for event in log.events("task-1")]
    dumped[0]["payload"] = {"n": 99}
    assert not verify_chain(dumped)


def test_audit_redact_keeps_usage_counts():
    payload = {"usage": {"total_tokens": 5}, "headers": {"Authorization": "Bearer x"}, "text": "y" * 5000}
    safe = redact(payload)
    assert safe["usage"] == {"total_tokens": 5}
    assert safe["headers"]["Authorization"] == "[redacted]"
    assert safe["text"].endswith("...[truncated]")


def test_audit_memory_is_bounded():
    log = DecisionAuditLog(max_tasks=2, max_events_per_task=3)
    for n in range(5):
        log.emit("task-1", "c1", "llm_retry", {"n": n})
    assert [event.payload["n"] for event in log.events("task-1")] == [2, 3, 4]

    log.emit("task-2", "c2", "cycle_started", {})
    log.emit("task-3", "c3", "cycle_started", {})
    assert log.tracked_tasks() == ["task-2", "task-3"]
    assert log.events("task-1") == []


def test_evicted_chain_resumes_from_jsonl(tmp_path):
    audit_dir = tmp_path / "audit"
    log = DecisionAuditLog(audit_dir=audit_dir, max_tasks=1)
    log.emit("task-1", "c1", "cycle_started", {})
    log.emit("task-2", "c2", "cycle_started", {})
    log.emit("task-1", "c1", "decision_accepted", {})
    DecisionAuditLog(audit_dir=audit_dir).emit("task-1", "c3", "cycle_started", {})

    lines = (audit_dir / "task-1.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert verify_chain(json.loads(line) for line in lines)


def test_chain_resumes_from_store(tmp_path):
    store = SqliteAuditStore(tmp_path / "audit.db")
    DecisionAuditLog(store=store).emit("task-1", "c1", "cycle_started", {})
    DecisionAuditLog(store=store).emit("task-1", "c2", "cycle_started", {})
    assert verify_chain(store.events_for("task-1"))
    assert store.last_hash("task-1") == store.events_for("task-1")[-1]["event_hash"]
    assert store.last_hash("task-9") is None


def test_audit_file_names_stay_inside_audit_dir(tmp_path):
    audit_dir = tmp_path / "audit"
    log = DecisionAuditLog(audit_dir=audit_dir)
    log.emit("../escape", "c1", "cycle_started", {})
    log.emit("team/a", "c2", "cycle_started", {})
    assert not (tmp_path / "escape.jsonl").exists()
    assert sorted(path.name for path in audit_dir.iterdir()) == ["..%2Fescape.jsonl", "team%2Fa.jsonl"]
