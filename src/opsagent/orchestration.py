"""Orchestration decisions: validation, confidence gating and a rule-based fallback."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from numbers import Number
from typing import Any, Mapping

from pydantic import ConfigDict, Field, ValidationError, field_validator

from opsagent.interpreter import AuthorizedEffect, DecisionRejected, EffectKind, RejectionRule
from opsagent.prompts.intake import (
    INTENT_CATEGORIES,
    URGENCY_KEYWORDS,
    IntakeClassification,
    IntakeRequest,
    detect_intent_category,
    detect_urgency_level,
)
from opsagent.structured import format_validation_error
from opsagent.tasks import DomainModel
from opsagent.util.logging import get_logger

logger = get_logger(__name__)

FALLBACK_CONFIDENCE = 0.3
DEFAULT_ACTION_PRIORITY = 3


class DecisionType(str, Enum):
    ASSIGN_PIPELINE = "ASSIGN_PIPELINE"
    CREATE_TASK = "CREATE_TASK"
    CREATE_EVENT = "CREATE_EVENT"
    UPDATE_EVENT = "UPDATE_EVENT"
    CANCEL_EVENT = "CANCEL_EVENT"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"
    TRIGGER_AUTOMATION = "TRIGGER_AUTOMATION"
    ESCALATE = "ESCALATE"
    NO_ACTION = "NO_ACTION"


class Disposition(str, Enum):
    AUTO_EXECUTE = "AUTO_EXECUTE"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"
    REJECT = "REJECT"


EFFECT_KINDS = {
    DecisionType.ASSIGN_PIPELINE: EffectKind.PIPELINE_ASSIGNMENT,
    DecisionType.CREATE_TASK: EffectKind.TASK_CREATION,
    DecisionType.CREATE_EVENT: EffectKind.CALENDAR_CREATE,
    DecisionType.UPDATE_EVENT: EffectKind.CALENDAR_UPDATE,
    DecisionType.CANCEL_EVENT: EffectKind.CALENDAR_CANCEL,
    DecisionType.SEND_NOTIFICATION: EffectKind.NOTIFICATION_DISPATCH,
    DecisionType.TRIGGER_AUTOMATION: EffectKind.AUTOMATION_TRIGGER,
    DecisionType.ESCALATE: EffectKind.ESCALATION,
    DecisionType.NO_ACTION: EffectKind.NO_OP,
}

REQUIRED_STRING_PARAMS: dict[DecisionType, tuple[str, ...]] = {
    DecisionType.ASSIGN_PIPELINE: ("intakeId", "pipelineId"),
    DecisionType.CREATE_TASK: ("title",),
    DecisionType.CREATE_EVENT: ("title", "startTime", "endTime"),
    DecisionType.UPDATE_EVENT: ("eventId",),
    DecisionType.CANCEL_EVENT: ("eventId",),
    DecisionType.SEND_NOTIFICATION: ("type", "subject", "body"),
    DecisionType.TRIGGER_AUTOMATION: ("workflowId",),
    DecisionType.ESCALATE: ("reason", "priority"),
    DecisionType.NO_ACTION: (),
}


class OrchestrationAction(DomainModel):
    model_config = ConfigDict(frozen=True)

    type: DecisionType
    priority: int = DEFAULT_ACTION_PRIORITY
    params: dict[str, Any] = Field(default_factory=dict)
    requires_confirmation: bool = False

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, Number):
            return DEFAULT_ACTION_PRIORITY
        return max(1, min(5, int(value)))


class OrchestrationDecision(DomainModel):
    model_config = ConfigDict(frozen=True)

    intent: DecisionType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    urgency: int = 3
    actions: list[OrchestrationAction] = Field(min_length=1)
    requires_approval: bool = False
    approval_reason: str | None = None
    suggested_follow_up: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class ConfidenceThresholds:
    auto_execute: float = 0.85
    require_approval: float = 0.5


DEFAULT_THRESHOLDS = ConfidenceThresholds()


@dataclass(frozen=True)
class OrchestrationVerdict:
    decision: OrchestrationDecision
    disposition: Disposition
    effects: tuple[AuthorizedEffect, ...]
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "disposition": self.disposition.value,
            "reason": self.reason,
            "decision": self.decision.to_wire(),
            "effects": [effect.to_dict() for effect in self.effects],
        }


def validate_action_params(action: OrchestrationAction, index: int) -> None:
    params = action.params
    for key in REQUIRED_STRING_PARAMS[action.type]:
        if key not in params:
            raise DecisionRejected(
                RejectionRule.MISSING_FIELD, f"{action.type.value} requires '{key}'", index
            )
        if not isinstance(params[key], str) or not params[key]:
            raise DecisionRejected(
                RejectionRule.INVALID_FIELD, f"{action.type.value}.{key} must be a non-empty string", index
            )
    if action.type is DecisionType.SEND_NOTIFICATION:
        if not params.get("recipientIds") and not params.get("recipientEmails"):
            raise DecisionRejected(
                RejectionRule.MISSING_FIELD,
                "SEND_NOTIFICATION requires 'recipientIds' or 'recipientEmails'",
                index,
            )
    if action.type is DecisionType.ESCALATE:
        level = params.get("level")
        if isinstance(level, bool) or not isinstance(level, Number):
            raise DecisionRejected(
                RejectionRule.MISSING_FIELD if level is None else RejectionRule.INVALID_FIELD,
                "ESCALATE.level must be a number",
                index,
            )


def parse_orchestration_decision(raw: OrchestrationDecision | Mapping[str, Any]) -> OrchestrationDecision:
    if isinstance(raw, OrchestrationDecision):
        return raw
    try:
        return OrchestrationDecision.model_validate(raw)
    except ValidationError as exc:
        raise DecisionRejected(RejectionRule.MALFORMED_DECISION, format_validation_error(exc)) from exc


def _effects(decision: OrchestrationDecision) -> tuple[AuthorizedEffect, ...]:
    return tuple(
        AuthorizedEffect(
            EFFECT_KINDS[action.type],
            index,
            {"priority": action.priority, **action.params},
        )
        for index, action in enumerate(decision.actions)
    )


def evaluate_orchestration_decision(
    raw: OrchestrationDecision | Mapping[str, Any],
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
    enabled_actions: set[DecisionType] | None = None,
) -> OrchestrationVerdict:
    """Validate every action, then gate the whole decision on confidence.

    Any invalid action rejects the decision with DecisionRejected. A valid
    decision below the approval threshold is returned with REJECT and no
    effects; an explicit approval request always wins over auto-execution.
    """
    decision = parse_orchestration_decision(raw)
    for index, action in enumerate(decision.actions):
        if enabled_actions is not None and action.type not in enabled_actions:
            raise DecisionRejected(
                RejectionRule.ACTION_NOT_PERMITTED,
                f"{action.type.value} is not enabled for this agent",
                index,
            )
        validate_action_params(action, index)

    if decision.confidence < thresholds.require_approval:
        logger.warning("Orchestration decision below confidence threshold: %.2f", decision.confidence)
        return OrchestrationVerdict(decision, Disposition.REJECT, (), "Confidence below threshold")

    effects = _effects(decision)
    if decision.requires_approval or any(action.requires_confirmation for action in decision.actions):
        reason = decision.approval_reason or "Approval requested"
        return OrchestrationVerdict(decision, Disposition.REQUIRE_APPROVAL, effects, reason)
    if decision.confidence >= thresholds.auto_execute:
        return OrchestrationVerdict(decision, Disposition.AUTO_EXECUTE, effects, "High confidence")
    return OrchestrationVerdict(decision, Disposition.REQUIRE_APPROVAL, effects, "Moderate confidence")


def resolve_pipeline(category: str, pipeline_ids: Mapping[str, str] | None = None) -> str | None:
    """Org pipeline id for a category's default pipeline slug; the slug itself when unmapped."""
    slug = INTENT_CATEGORIES[category].default_pipeline
    if slug is None:
        return None
    return pipeline_ids.get(slug) if pipeline_ids is not None else slug


def fallback_decision(
    text: str,
    reason: str,
    intake_id: str | None = None,
    pipeline_ids: Mapping[str, str] | None = None,
    enable_pipeline_assignment: bool = True,
) -> OrchestrationDecision:
    """Keyword-only decision used when the model is unavailable.

    Always low confidence and always gated on a human. `pipeline_ids` maps a
    category's default pipeline slug to an org pipeline id.
    """
    urgency = detect_urgency_level(text)
    intents = detect_intent_category(text)
    category = intents[0].category if intents else "GENERAL"
    pipeline_id = resolve_pipeline(category, pipeline_ids)

    actions: list[OrchestrationAction] = []
    intent = DecisionType.NO_ACTION
    if enable_pipeline_assignment and intake_id and pipeline_id:
        intent = DecisionType.ASSIGN_PIPELINE
        actions.append(
            OrchestrationAction(
                type=DecisionType.ASSIGN_PIPELINE,
                priority=urgency.level,
                params={
                    "intakeId": intake_id,
                    "pipelineId": pipeline_id,
                    "notes": f"[FALLBACK] {reason}. Intent detected: {category}",
                },
                requires_confirmation=True,
            )
        )
    if urgency.level >= 4:
        if intent is DecisionType.NO_ACTION:
            intent = DecisionType.ESCALATE
        actions.append(
            OrchestrationAction(
                type=DecisionType.ESCALATE,
                priority=urgency.level,
                params={
                    "reason": f"[FALLBACK] Urgent input: {', '.join(urgency.matched_keywords)}",
                    "level": urgency.level,
                    "priority": "high" if urgency.level == 4 else "critical",
                },
                requires_confirmation=True,
            )
        )
    if not actions:
        actions.append(
            OrchestrationAction(type=DecisionType.NO_ACTION, params={"reason": reason})
        )

    return OrchestrationDecision(
        intent=intent,
        confidence=FALLBACK_CONFIDENCE,
        reasoning=f"[FALLBACK] {reason}. Rule-based classification: {category}",
        urgency=urgency.level,
        actions=actions,
        requires_approval=True,
        approval_reason="Fallback decision requires human review",
        metadata={"fallback": True, "category": category},
    )


def fallback_verdict(decision: OrchestrationDecision) -> OrchestrationVerdict:
    """Fallback decisions skip the confidence gate and always wait for a human."""
    for index, action in enumerate(decision.actions):
        validate_action_params(action, index)
    return OrchestrationVerdict(
        decision, Disposition.REQUIRE_APPROVAL, _effects(decision), decision.approval_reason or "Fallback"
    )


def fallback_classification(
    intake: IntakeRequest,
    reason: str,
    pipeline_ids: Mapping[str, str] | None = None,
) -> IntakeClassification:
    """Keyword classification of an intake, flagged for human review."""
    text = " ".join(part for part in (intake.subject, intake.body) if part)
    urgency = detect_urgency_level(text)
    intents = detect_intent_category(text)
    category = intents[0].category if intents else "GENERAL"
    is_spam = category == "SPAM"
    response_time = next(band.response_time for band in URGENCY_KEYWORDS.values() if band.level == urgency.level)
    return IntakeClassification(
        classification={
            "category": category,
            "confidence": FALLBACK_CONFIDENCE,
            "reasoning": f"[FALLBACK] {reason}",
        },
        urgency={
            "level": urgency.level,
            "reasoning": f"Matched keywords: {', '.join(urgency.matched_keywords) or 'none'}",
            "responseTime": response_time,
        },
        extraction={"contactName": intake.sender_name, "email": intake.sender_email},
        routing={
            "pipelineId": None if is_spam else resolve_pipeline(category, pipeline_ids),
            "assigneeId": None,
            "reasoning": "Default pipeline for the detected category",
        },
        flags={"isSpam": is_spam, "requiresHumanReview": True, "isDuplicate": False},
        suggested_title=intake.subject or intake.body[:80],
        metadata={"fallback": True},
    )
