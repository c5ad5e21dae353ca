"""Versioned wire schemas for every structured response the agents request.

The JSON schemas are written by hand so the provider sees exactly the
contract we enforce; each is paired with the pydantic model that performs
the strict local validation.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable

from opsagent.orchestration import DecisionType, OrchestrationDecision
from opsagent.prompts.intake import INTENT_CATEGORIES, IntakeClassification
from opsagent.structured import StructuredSchema
from opsagent.tasks import ACTION_TYPES, AgentDecision, DecisionEnvelope, TaskInstance, TaskTemplate

SCHEMA_VERSION = "1.0.0"

_STATUSES = ["NEW", "IN_PROGRESS", "NEEDS_REVIEW", "BLOCKED", "DONE", "CANCELLED"]


def _action(type_name: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {"type": {"const": type_name}, **properties},
        "required": ["type", *required],
        "additionalProperties": False,
    }


_NON_EMPTY = {"type": "string", "minLength": 1}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

ACTION_SCHEMAS: dict[str, dict[str, Any]] = {
    "SET_STATUS": _action("SET_STATUS", {"toStatus": {"enum": _STATUSES}}, ["toStatus"]),
    "SET_STAGE": _action("SET_STAGE", {"toStageKey": _NON_EMPTY}, ["toStageKey"]),
    "ASSIGN_STAFF": _action(
        "ASSIGN_STAFF",
        {
            "strategy": {"enum": ["LEAST_BUSY_IN_ROLE", "KEEP_EXISTING", "UNASSIGN"]},
            "role": {"type": "string"},
        },
        ["strategy"],
    ),
    "TAG_TASK": _action("TAG_TASK", {"add": _STRING_LIST, "remove": _STRING_LIST}, ["add"]),
    "PING_CUSTOMER": _action(
        "PING_CUSTOMER",
        {"channel": {"enum": ["EMAIL", "SMS", "CHAT"]}, "templateHint": {"type": "string"}},
        ["channel", "templateHint"],
    ),
    "ADD_INTERNAL_NOTE": _action("ADD_INTERNAL_NOTE", {"note": _NON_EMPTY}, ["note"]),
    "ESCALATE": _action("ESCALATE", {"reason": _NON_EMPTY, "targetRole": {"type": "string"}}, ["reason"]),
    "NO_OP": _action("NO_OP", {"reason": _NON_EMPTY}, ["reason"]),
}


def agent_decision_schema(allowed_actions: Iterable[str], overridden: bool = False) -> dict[str, Any]:
    """Decision schema whose action variants are limited to `allowed_actions`.

    Unknown names are dropped. While a task is overridden only NO_OP is
    offered, whatever the template allows.
    """
    permitted = {"NO_OP"} if overridden else set(allowed_actions)
    variants = [copy.deepcopy(ACTION_SCHEMAS[name]) for name in ACTION_TYPES if name in permitted]
    return {
        "$id": f"opsagent/agent-decision/{SCHEMA_VERSION}",
        "type": "object",
        "properties": {
            "reasoning": {"type": "string"},
            "actions": {"type": "array", "minItems": 1, "items": {"oneOf": variants}},
        },
        "required": ["reasoning", "actions"],
        "additionalProperties": False,
    }


AGENT_DECISION_SCHEMA: dict[str, Any] = agent_decision_schema(ACTION_TYPES)

ORCHESTRATION_DECISION_SCHEMA: dict[str, Any] = {
    "$id": f"opsagent/orchestration-decision/{SCHEMA_VERSION}",
    "type": "object",
    "properties": {
        "intent": {"enum": [item.value for item in DecisionType]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "reasoning": {"type": "string"},
        "urgency": {"type": "integer", "minimum": 1, "maximum": 5},
        "actions": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "type": {"enum": [item.value for item in DecisionType]},
                    "priority": {"type": "integer", "minimum": 1, "maximum": 5},
                    "params": {"type": "object"},
                    "requiresConfirmation": {"type": "boolean"},
                },
                "required": ["type", "params"],
            },
        },
        "requiresApproval": {"type": "boolean"},
        "approvalReason": {"type": ["string", "null"]},
        "suggestedFollowUp": {"type": ["string", "null"]},
        "metadata": {"type": "object"},
    },
    "required": ["intent", "confidence", "reasoning", "actions"],
}

INTAKE_CLASSIFICATION_SCHEMA: dict[str, Any] = {
    "$id": f"opsagent/intake-classification/{SCHEMA_VERSION}",
    "type": "object",
    "properties": {
        "classification": {
            "type": "object",
            "properties": {
                "category": {"enum": list(INTENT_CATEGORIES)},
                "confidence": {"type": "number"},
                "reasoning": {"type": "string"},
            },
            "required": ["category", "confidence"],
        },
        "urgency": {
            "type": "object",
            "properties": {"level": {"type": "integer", "minimum": 1, "maximum": 5}},
            "required": ["level"],
        },
        "extraction": {"type": "object"},
        "routing": {
            "type": "object",
            "properties": {"pipelineId": {"type": ["string", "null"]}},
        },
        "flags": {"type": "object"},
        "suggestedTitle": {"type": "string"},
        "suggestedDescription": {"type": "string"},
    },
    "required": ["classification", "urgency", "routing"],
}

AGENT_DECISION = StructuredSchema(
    name="agent_decision",
    description="Next actions for a business task",
    json_schema=AGENT_DECISION_SCHEMA,
    model=AgentDecision,
)

ORCHESTRATION_DECISION = StructuredSchema(
    name="orchestration_decision",
    description="Routing decision for an incoming request",
    json_schema=ORCHESTRATION_DECISION_SCHEMA,
    model=OrchestrationDecision,
)

INTAKE_CLASSIFICATION = StructuredSchema(
    name="intake_classification",
    description="Classification and routing of an intake request",
    json_schema=INTAKE_CLASSIFICATION_SCHEMA,
    model=IntakeClassification,
)

# Same wire contract, but only the envelope is checked locally so the
# interpreter can name the exact rule an action breaks.
AGENT_DECISION_ENVELOPE = StructuredSchema(
    name="agent_decision",
    description="Next actions for a business task",
    json_schema=AGENT_DECISION_SCHEMA,
    model=DecisionEnvelope,
)


def decision_contract(template: TaskTemplate, task: TaskInstance) -> StructuredSchema[DecisionEnvelope]:
    """Envelope contract for one task: the provider sees only permitted actions."""
    return StructuredSchema(
        name="agent_decision",
        description="Next actions for a business task",
        json_schema=agent_decision_schema(template.agent_config.allowed_actions, task.override.overridden),
        model=DecisionEnvelope,
    )
