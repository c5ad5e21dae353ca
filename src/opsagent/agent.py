"""Task agent: one event in, one audited decision cycle out."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import threading
import time
from typing import Any, Callable, Iterator
from uuid import uuid4

from opsagent.errors import LLMError, RateLimitError
from opsagent.interpreter import AuthorizedActions, DecisionRejected, interpret_decision
from opsagent.models.base import BaseLLMClient
from opsagent.models.messages import LLMOptions
from opsagent.prompts.task_agent import build_task_agent_prompts
from opsagent.runtime.audit import DecisionAuditLog
from opsagent.runtime.backoff import BackoffPolicy, call_with_backoff
from opsagent.runtime.rate_limit import RateLimiter
from opsagent.runtime.storage import DecisionStore, InMemoryDecisionStore
from opsagent.schemas import decision_contract
from opsagent.structured import StructuredSchema
from opsagent.tasks import (
    AgentDecision,
    DecisionEnvelope,
    DecisionLogEntry,
    NoOpAction,
    TaskEvent,
    TaskInstance,
    TaskTemplate,
)
from opsagent.util.logging import get_logger, redact


logger = get_logger(__name__)

OVERRIDE_SHORT_CIRCUIT_REASON = "Task is under human override; no automated action taken."


class CycleStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    SHORT_CIRCUITED = "SHORT_CIRCUITED"


@dataclass(frozen=True)
class DecisionOutcome:
    task_id: str
    cycle_id: str
    status: CycleStatus
    authorized: AuthorizedActions | None = None
    rejection: DecisionRejected | None = None
    entry: DecisionLogEntry | None = None

    @property
    def accepted(self) -> bool:
        return self.status is CycleStatus.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "authorized": self.authorized.to_dict() if self.authorized else None,
            "rejection": self.rejection.to_dict() if self.rejection else None,
        }


@dataclass
class _Turnstile:
    condition: threading.Condition
    issued: int = 0
    serving: int = 0


class TaskLocks:
    """Per-task turnstile: cycles for one task run one at a time, in arrival order.

    Each caller draws a ticket and waits until it is served. Entries are
    dropped once every issued ticket has been served.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._turnstiles: dict[str, _Turnstile] = {}

    @contextmanager
    def hold(self, task_id: str) -> Iterator[None]:
        with self._guard:
            turnstile = self._turnstiles.get(task_id)
            if turnstile is None:
                turnstile = _Turnstile(threading.Condition(self._guard))
                self._turnstiles[task_id] = turnstile
            ticket = turnstile.issued
            turnstile.issued += 1
            while turnstile.serving != ticket:
                turnstile.condition.wait()
        try:
            yield
        finally:
            with self._guard:
                turnstile.serving += 1
                if turnstile.serving == turnstile.issued:
                    del self._turnstiles[task_id]
                else:
                    turnstile.condition.notify_all()

    def pending(self, task_id: str) -> int:
        """Cycles holding or waiting for `task_id`."""
        with self._guard:
            turnstile = self._turnstiles.get(task_id)
            return turnstile.issued - turnstile.serving if turnstile else 0

    def active(self) -> list[str]:
        with self._guard:
            return list(self._turnstiles)


class TaskAgent:
    def __init__(
        self,
        client: BaseLLMClient,
        store: DecisionStore | None = None,
        audit: DecisionAuditLog | None = None,
        rate_limiter: RateLimiter | None = None,
        backoff: BackoffPolicy | None = None,
        options: LLMOptions | None = None,
        recent_limit: int = 5,
        short_circuit_overrides: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.client = client
        self.store = store or InMemoryDecisionStore()
        self.audit = audit or DecisionAuditLog()
        self.rate_limiter = rate_limiter
        self.backoff = backoff or BackoffPolicy()
        self.options = options
        self.recent_limit = recent_limit
        self.short_circuit_overrides = short_circuit_overrides
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: uuid4().hex)
        self.locks = TaskLocks()

    def decide(self, template: TaskTemplate, task: TaskInstance, event: TaskEvent) -> DecisionOutcome:
        """Run one decision cycle for `task`; cycles for the same task never overlap.

        Provider failures that survive the backoff policy are audited and
        re-raised. A rejected decision is audited and returned, never stored.
        """
        with self.locks.hold(task.id):
            cycle_id = self._id_factory()
            logger.info("Decision cycle %s started (task=%s, event=%s).", cycle_id, task.id, event.name)
            self.audit.emit(task.id, cycle_id, "cycle_started", {"event": event.to_wire()})

            if task.override.overridden and self.short_circuit_overrides:
                return self._short_circuit(template, task, cycle_id)

            recent = self.store.recent(task.id, self.recent_limit)
            messages = build_task_agent_prompts(template, task, event, recent).to_messages()
            contract = decision_contract(template, task)
            try:
                envelope = call_with_backoff(
                    lambda: self._request(messages, contract),
                    self.backoff,
                    sleep=self._sleep,
                    on_retry=lambda exc, attempt, delay: self.audit.emit(
                        task.id,
                        cycle_id,
                        "llm_retry",
                        {"error": exc.to_dict(), "attempt": attempt, "delay_ms": delay},
                    ),
                )
            except LLMError as exc:
                logger.error("Decision cycle %s failed: %s", cycle_id, redact(exc.message))
                self.audit.emit(task.id, cycle_id, "llm_failed", {"error": exc.to_dict()})
                raise

            raw = envelope.model_dump()
            try:
                authorized = interpret_decision(raw, template, task)
            except DecisionRejected as rejection:
                logger.warning(
                    "Decision cycle %s rejected (%s): %s", cycle_id, rejection.rule.value, rejection.message
                )
                self.audit.emit(
                    task.id, cycle_id, "decision_rejected", {"decision": raw, "rejection": rejection.to_dict()}
                )
                return DecisionOutcome(task.id, cycle_id, CycleStatus.REJECTED, rejection=rejection)

            entry = DecisionLogEntry(
                id=cycle_id,
                task_id=task.id,
                decision=authorized.decision,
                applied_at=self._clock(),
            )
            self.store.append(entry)
            self.audit.emit(task.id, cycle_id, "decision_accepted", authorized.to_dict())
            logger.info("Decision cycle %s accepted with %d effect(s).", cycle_id, len(authorized.effects))
            return DecisionOutcome(task.id, cycle_id, CycleStatus.ACCEPTED, authorized=authorized, entry=entry)

    def _admit(self) -> None:
        """Count one provider call against the client's credential."""
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(self.client.credential_key, self.client.provider)

    def _request(self, messages: list[Any], contract: StructuredSchema[DecisionEnvelope]) -> DecisionEnvelope:
        try:
            return self.client.complete_with_json(messages, contract, self.options, before_call=self._admit)
        except RateLimitError as exc:
            if self.rate_limiter is not None and exc.retry_after_ms is not None:
                self.rate_limiter.penalize(self.client.credential_key, exc.retry_after_ms)
            raise

    def _short_circuit(self, template: TaskTemplate, task: TaskInstance, cycle_id: str) -> DecisionOutcome:
        logger.info("Task %s is overridden; skipping model call.", task.id)
        decision = AgentDecision(
            reasoning=OVERRIDE_SHORT_CIRCUIT_REASON,
            actions=[NoOpAction(reason=task.override.reason or "human override active")],
        )
        authorized = interpret_decision(decision, template, task)
        self.audit.emit(task.id, cycle_id, "short_circuited", authorized.to_dict())
        return DecisionOutcome(task.id, cycle_id, CycleStatus.SHORT_CIRCUITED, authorized=authorized)
