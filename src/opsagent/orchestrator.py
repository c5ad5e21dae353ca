"""Orchestration and intake cycles: prompt, structured call, gate, fallback.

Both runners fall back to the keyword heuristics when the model cannot be
reached after the backoff policy, or when its answer fails validation.
Fallback results are always routed to a human.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Callable, Mapping

from opsagent.errors import LLMError, RateLimitError
from opsagent.interpreter import DecisionRejected
from opsagent.models.base import BaseLLMClient
from opsagent.models.messages import ChatMessage, LLMOptions
from opsagent.orchestration import (
    DEFAULT_THRESHOLDS,
    ConfidenceThresholds,
    DecisionType,
    OrchestrationVerdict,
    evaluate_orchestration_decision,
    fallback_classification,
    fallback_decision,
    fallback_verdict,
)
from opsagent.prompts.intake import IntakeClassification, IntakeRequest, build_intake_routing_prompts
from opsagent.prompts.orchestration import (
    AgentInput,
    OrgContext,
    RecentOrchestrationDecision,
    build_orchestration_prompts,
)
from opsagent.runtime.backoff import BackoffPolicy, call_with_backoff
from opsagent.runtime.rate_limit import RateLimiter
from opsagent.schemas import INTAKE_CLASSIFICATION, ORCHESTRATION_DECISION
from opsagent.structured import StructuredSchema
from opsagent.util.logging import get_logger, redact

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrchestrationOutcome:
    verdict: OrchestrationVerdict
    used_fallback: bool = False
    fallback_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.verdict.to_dict(),
            "used_fallback": self.used_fallback,
            "fallback_reason": self.fallback_reason,
        }


@dataclass(frozen=True)
class IntakeRouting:
    classification: IntakeClassification
    used_fallback: bool = False
    fallback_reason: str | None = None


class _ModelCaller:
    def __init__(
        self,
        client: BaseLLMClient,
        rate_limiter: RateLimiter | None = None,
        backoff: BackoffPolicy | None = None,
        options: LLMOptions | None = None,
        enable_fallback: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.rate_limiter = rate_limiter
        self.backoff = backoff or BackoffPolicy()
        self.options = options
        self.enable_fallback = enable_fallback
        self._sleep = sleep

    def _admit(self) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(self.client.credential_key, self.client.provider)

    def _request(self, messages: list[ChatMessage], schema: StructuredSchema[Any]) -> Any:
        try:
            return self.client.complete_with_json(messages, schema, self.options, before_call=self._admit)
        except RateLimitError as exc:
            if self.rate_limiter is not None and exc.retry_after_ms is not None:
                self.rate_limiter.penalize(self.client.credential_key, exc.retry_after_ms)
            raise

    def _call(self, messages: list[ChatMessage], schema: StructuredSchema[Any]) -> Any:
        return call_with_backoff(lambda: self._request(messages, schema), self.backoff, sleep=self._sleep)


class OrchestrationAgent(_ModelCaller):
    """Routes incoming inputs to gated orchestration decisions."""

    def __init__(
        self,
        client: BaseLLMClient,
        org: OrgContext,
        *,
        enabled_actions: set[DecisionType] | None = None,
        thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
        pipeline_ids: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(client, **kwargs)
        self.org = org
        self.enabled_actions = enabled_actions
        self.thresholds = thresholds
        self.pipeline_ids = pipeline_ids

    def available_actions(self) -> list[str]:
        enabled = self.enabled_actions
        return [item.value for item in DecisionType if enabled is None or item in enabled]

    def process(
        self,
        agent_input: AgentInput,
        recent: list[RecentOrchestrationDecision] | None = None,
        intake_id: str | None = None,
    ) -> OrchestrationOutcome:
        """One orchestration cycle; provider failures are re-raised only when fallback is off."""
        messages = build_orchestration_prompts(self.org, agent_input, self.available_actions(), recent).to_messages()
        try:
            decision = self._call(messages, ORCHESTRATION_DECISION)
            verdict = evaluate_orchestration_decision(decision, self.thresholds, self.enabled_actions)
        except (LLMError, DecisionRejected) as exc:
            if not self.enable_fallback:
                raise
            reason = exc.message
            logger.warning("Orchestration falling back to rules: %s", redact(reason))
        else:
            logger.info(
                "Orchestration decision %s (confidence=%.2f, disposition=%s).",
                verdict.decision.intent.value,
                verdict.decision.confidence,
                verdict.disposition.value,
            )
            return OrchestrationOutcome(verdict)

        decision = fallback_decision(
            agent_input.raw_content,
            reason,
            intake_id=intake_id,
            pipeline_ids=self.pipeline_ids,
            enable_pipeline_assignment=self.enabled_actions is None
            or DecisionType.ASSIGN_PIPELINE in self.enabled_actions,
        )
        return OrchestrationOutcome(fallback_verdict(decision), used_fallback=True, fallback_reason=reason)


class IntakeRouter(_ModelCaller):
    """Classifies intake requests for routing."""

    def __init__(self, client: BaseLLMClient, *, pipeline_ids: Mapping[str, str] | None = None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.pipeline_ids = pipeline_ids

    def classify(self, intake: IntakeRequest) -> IntakeRouting:
        messages = build_intake_routing_prompts(intake).to_messages()
        try:
            return IntakeRouting(self._call(messages, INTAKE_CLASSIFICATION))
        except LLMError as exc:
            if not self.enable_fallback:
                raise
            logger.warning("Intake classification falling back to keywords: %s", redact(exc.message))
            classification = fallback_classification(intake, exc.message, self.pipeline_ids)
            return IntakeRouting(classification, used_fallback=True, fallback_reason=exc.message)
