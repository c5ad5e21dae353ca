"""Authorize agent decisions against a task template."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from opsagent.structured import format_validation_error
from opsagent.tasks import (
    ACTION_ADAPTER,
    ACTION_TYPES,
    AddInternalNoteAction,
    AgentDecision,
    AssignStaffAction,
    EscalateAction,
    NoOpAction,
    PingCustomerAction,
    SetStageAction,
    SetStatusAction,
    TagTaskAction,
    TaskInstance,
    TaskTemplate,
)

OVERRIDE_MESSAGE = "override active, only NO_OP permitted"
NOT_PERMITTED_MESSAGE = "action type not permitted for template"


class RejectionRule(str, Enum):
    MALFORMED_DECISION = "MALFORMED_DECISION"
    UNKNOWN_ACTION_TYPE = "UNKNOWN_ACTION_TYPE"
    OVERRIDE_ACTIVE = "OVERRIDE_ACTIVE"
    ACTION_NOT_PERMITTED = "ACTION_NOT_PERMITTED"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"


class EffectKind(str, Enum):
    STATUS_UPDATE = "STATUS_UPDATE"
    STAGE_UPDATE = "STAGE_UPDATE"
    ASSIGNMENT = "ASSIGNMENT"
    TAG_UPDATE = "TAG_UPDATE"
    CUSTOMER_NOTIFICATION = "CUSTOMER_NOTIFICATION"
    INTERNAL_NOTE = "INTERNAL_NOTE"
    ESCALATION = "ESCALATION"
    NO_OP = "NO_OP"
    PIPELINE_ASSIGNMENT = "PIPELINE_ASSIGNMENT"
    TASK_CREATION = "TASK_CREATION"
    CALENDAR_CREATE = "CALENDAR_CREATE"
    CALENDAR_UPDATE = "CALENDAR_UPDATE"
    CALENDAR_CANCEL = "CALENDAR_CANCEL"
    NOTIFICATION_DISPATCH = "NOTIFICATION_DISPATCH"
    AUTOMATION_TRIGGER = "AUTOMATION_TRIGGER"


class DecisionRejected(Exception):
    """Raised when a decision violates a rule. Nothing from it may execute."""

    def __init__(self, rule: RejectionRule, message: str, action_index: int | None = None) -> None:
        super().__init__(message)
        self.rule = rule
        self.message = message
        self.action_index = action_index

    def to_dict(self) -> dict[str, Any]:
        return {"rule": self.rule.value, "message": self.message, "action_index": self.action_index}


@dataclass(frozen=True)
class AuthorizedEffect:
    kind: EffectKind
    action_index: int
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "action_index": self.action_index, "params": self.params}


@dataclass(frozen=True)
class AuthorizedActions:
    task_id: str
    decision: AgentDecision
    effects: tuple[AuthorizedEffect, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "reasoning": self.decision.reasoning,
            "effects": [effect.to_dict() for effect in self.effects],
        }


def _effect_for(action: Any, index: int) -> AuthorizedEffect:
    if isinstance(action, SetStatusAction):
        return AuthorizedEffect(EffectKind.STATUS_UPDATE, index, {"to_status": action.to_status})
    if isinstance(action, SetStageAction):
        return AuthorizedEffect(EffectKind.STAGE_UPDATE, index, {"to_stage_key": action.to_stage_key})
    if isinstance(action, AssignStaffAction):
        return AuthorizedEffect(
            EffectKind.ASSIGNMENT, index, {"strategy": action.strategy, "role": action.role}
        )
    if isinstance(action, TagTaskAction):
        return AuthorizedEffect(
            EffectKind.TAG_UPDATE, index, {"add": list(action.add), "remove": list(action.remove or [])}
        )
    if isinstance(action, PingCustomerAction):
        return AuthorizedEffect(
            EffectKind.CUSTOMER_NOTIFICATION,
            index,
            {"channel": action.channel, "template_hint": action.template_hint},
        )
    if isinstance(action, AddInternalNoteAction):
        return AuthorizedEffect(EffectKind.INTERNAL_NOTE, index, {"note": action.note})
    if isinstance(action, EscalateAction):
        return AuthorizedEffect(
            EffectKind.ESCALATION, index, {"reason": action.reason, "target_role": action.target_role}
        )
    if isinstance(action, NoOpAction):
        return AuthorizedEffect(EffectKind.NO_OP, index, {"reason": action.reason})
    raise DecisionRejected(RejectionRule.UNKNOWN_ACTION_TYPE, f"unknown action {action!r}", index)


def _raw_decision(decision: AgentDecision | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(decision, AgentDecision):
        return decision.model_dump(mode="json", by_alias=True, exclude_none=True)
    if not isinstance(decision, Mapping):
        raise DecisionRejected(RejectionRule.MALFORMED_DECISION, "decision must be a JSON object")
    raw = dict(decision)
    extra = sorted(set(raw) - {"reasoning", "actions"})
    if extra:
        raise DecisionRejected(
            RejectionRule.MALFORMED_DECISION, f"unexpected top-level keys: {', '.join(extra)}"
        )
    if not isinstance(raw.get("reasoning"), str):
        raise DecisionRejected(RejectionRule.MALFORMED_DECISION, "reasoning must be a string")
    actions = raw.get("actions")
    if not isinstance(actions, list) or not actions:
        raise DecisionRejected(RejectionRule.MALFORMED_DECISION, "actions must be a non-empty list")
    return raw


def _validate_action(raw_action: Any, index: int) -> Any:
    try:
        return ACTION_ADAPTER.validate_python(raw_action)
    except ValidationError as exc:
        kinds = {error.get("type") for error in exc.errors()}
        # A snake_case key reports both the key as extra and its alias as missing.
        if "missing" in kinds and "extra_forbidden" not in kinds:
            rule = RejectionRule.MISSING_FIELD
        else:
            rule = RejectionRule.INVALID_FIELD
        raise DecisionRejected(rule, format_validation_error(exc), index) from exc


def interpret_decision(
    decision: AgentDecision | Mapping[str, Any],
    template: TaskTemplate,
    task: TaskInstance,
) -> AuthorizedActions:
    """Turn a decision into authorized effects, or reject all of it.

    Rules are checked per action in order: known type, human override
    (only NO_OP while overridden, whatever the template allows), template
    permission, then required fields. The first violation rejects the whole
    decision.
    """
    raw = _raw_decision(decision)
    allowed = set(template.agent_config.allowed_actions)
    overridden = task.override.overridden
    validated = []
    for index, raw_action in enumerate(raw["actions"]):
        action_type = raw_action.get("type") if isinstance(raw_action, Mapping) else None
        if not isinstance(action_type, str) or action_type not in ACTION_TYPES:
            raise DecisionRejected(
                RejectionRule.UNKNOWN_ACTION_TYPE, f"unknown action type: {action_type!r}", index
            )
        if overridden:
            if action_type != "NO_OP":
                raise DecisionRejected(RejectionRule.OVERRIDE_ACTIVE, OVERRIDE_MESSAGE, index)
        elif action_type not in allowed:
            raise DecisionRejected(RejectionRule.ACTION_NOT_PERMITTED, NOT_PERMITTED_MESSAGE, index)
        validated.append(_validate_action(raw_action, index))
    parsed = AgentDecision(reasoning=raw["reasoning"], actions=validated)
    effects = tuple(_effect_for(action, index) for index, action in enumerate(validated))
    return AuthorizedActions(task_id=task.id, decision=parsed, effects=effects)
