from __future__ import annotations

from datetime import datetime, timezone

import pytest

from opsagent.interpreter import DecisionRejected, EffectKind, RejectionRule
from opsagent.orchestration import (
    DecisionType,
    Disposition,
    OrchestrationAction,
    evaluate_orchestration_decision,
    fallback_decision,
    fallback_verdict,
)
from opsagent.prompts.orchestration import (
    AgentInput,
    OrgContext,
    PipelineInfo,
    RecentOrchestrationDecision,
    build_orchestration_prompts,
)


def _decision(confidence: float, *actions: dict, **extra) -> dict:
    return {
        "intent": actions[0]["type"] if actions else "NO_ACTION",
        "confidence": confidence,
        "reasoning": "test",
        "actions": list(actions),
        **extra,
    }


TASK = {"type": "CREATE_TASK", "params": {"title": "Call back customer"}}


def test_high_confidence_auto_executes():
    verdict = evaluate_orchestration_decision(_decision(0.9, TASK))
    assert verdict.disposition is Disposition.AUTO_EXECUTE
    assert verdict.reason == "High confidence"
    assert verdict.effects[0].kind is EffectKind.TASK_CREATION
    assert verdict.effects[0].params == {"priority": 3, "title": "Call back customer"}


def test_moderate_confidence_requires_approval():
    verdict = evaluate_orchestration_decision(_decision(0.6, TASK))
    assert verdict.disposition is Disposition.REQUIRE_APPROVAL
    assert verdict.reason == "Moderate confidence"


def test_low_confidence_rejects_without_effects():
    verdict = evaluate_orchestration_decision(_decision(0.4, TASK))
    assert verdict.disposition is Disposition.REJECT
    assert verdict.effects == ()


def test_explicit_approval_wins_over_high_confidence():
    verdict = evaluate_orchestration_decision(
        _decision(0.95, TASK, requiresApproval=True, approvalReason="Touches an external party")
    )
    assert verdict.disposition is Disposition.REQUIRE_APPROVAL
    assert verdict.reason == "Touches an external party"

    confirm = {**TASK, "requiresConfirmation": True}
    assert evaluate_orchestration_decision(_decision(0.95, confirm)).disposition is Disposition.REQUIRE_APPROVAL


@pytest.mark.parametrize(
    ("action", "rule"),
    [
        ({"type": "CREATE_EVENT", "params": {"title": "Demo", "endTime": "2024-01-16T10:00:00Z"}}, RejectionRule.MISSING_FIELD),
        ({"type": "CREATE_TASK", "params": {"title": ""}}, RejectionRule.INVALID_FIELD),
        (
            {"type": "SEND_NOTIFICATION", "params": {"type": "EMAIL", "subject": "Hi", "body": "Hello"}},
            RejectionRule.MISSING_FIELD,
        ),
        (
            {"type": "ESCALATE", "params": {"reason": "outage", "priority": "critical", "level": "high"}},
            RejectionRule.INVALID_FIELD,
        ),
    ],
)
def test_invalid_params_reject_decision(action, rule):
    with pytest.raises(DecisionRejected) as excinfo:
        evaluate_orchestration_decision(_decision(0.9, TASK, action))
    assert excinfo.value.rule is rule
    assert excinfo.value.action_index == 1


def test_disabled_action_is_not_permitted():
    with pytest.raises(DecisionRejected) as excinfo:
        evaluate_orchestration_decision(_decision(0.9, TASK), enabled_actions={DecisionType.NO_ACTION})
    assert excinfo.value.rule is RejectionRule.ACTION_NOT_PERMITTED


def test_malformed_decision():
    with pytest.raises(DecisionRejected) as excinfo:
        evaluate_orchestration_decision(_decision(1.5, TASK))
    assert excinfo.value.rule is RejectionRule.MALFORMED_DECISION
    with pytest.raises(DecisionRejected):
        evaluate_orchestration_decision(_decision(0.9))


def test_priority_is_clamped():
    assert OrchestrationAction.model_validate({"type": "NO_ACTION", "priority": 9}).priority == 5
    assert OrchestrationAction.model_validate({"type": "NO_ACTION", "priority": -2}).priority == 1
    assert OrchestrationAction.model_validate({"type": "NO_ACTION", "priority": "urgent"}).priority == 3
    assert OrchestrationAction.model_validate({"type": "NO_ACTION", "priority": True}).priority == 3


def test_fallback_assigns_pipeline_and_escalates():
    decision = fallback_decision(
        "Urgent: pricing question for our enterprise plan",
        "LLM unavailable",
        intake_id="in-1",
        pipeline_ids={"sales-inquiries": "pl-9"},
    )
    assert decision.intent is DecisionType.ASSIGN_PIPELINE
    assert decision.confidence == 0.3
    assert decision.requires_approval
    assert [action.type for action in decision.actions] == [DecisionType.ASSIGN_PIPELINE, DecisionType.ESCALATE]
    assign, escalate = decision.actions
    assert assign.params["pipelineId"] == "pl-9"
    assert assign.params["notes"] == "[FALLBACK] LLM unavailable. Intent detected: SALES_INQUIRY"
    assert escalate.params["priority"] == "high"
    assert decision.metadata == {"fallback": True, "category": "SALES_INQUIRY"}

    verdict = fallback_verdict(decision)
    assert verdict.disposition is Disposition.REQUIRE_APPROVAL
    assert len(verdict.effects) == 2


def test_fallback_without_signal_does_nothing():
    decision = fallback_decision("hello there", "Timed out")
    assert decision.intent is DecisionType.NO_ACTION
    assert decision.actions[0].params == {"reason": "Timed out"}
    assert decision.metadata["category"] == "GENERAL"
    # the confidence gate would discard it; the fallback path keeps it for review
    assert evaluate_orchestration_decision(decision).disposition is Disposition.REJECT
    assert fallback_verdict(decision).disposition is Disposition.REQUIRE_APPROVAL


def test_fallback_respects_disabled_pipeline_assignment():
    decision = fallback_decision("pricing please", "down", intake_id="in-1", enable_pipeline_assignment=False)
    assert [action.type for action in decision.actions] == [DecisionType.NO_ACTION]


def test_orchestration_prompts():
    org = OrgContext(
        org_name="Acme",
        current_datetime=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        pipelines=[PipelineInfo(id="pl-1", name="Sales", stages=["New", "Qualified"])],
    )
    agent_input = AgentInput(
        source="EMAIL",
        type="intake",
        raw_content="Can we get a demo?",
        timestamp=datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc),
        sender_email="lead@example.com",
    )
    recent = [RecentOrchestrationDecision(decision_type="ASSIGN_PIPELINE", input_type="intake", confidence=0.9, status="EXECUTED")]
    pair = build_orchestration_prompts(org, agent_input, ["ASSIGN_PIPELINE", "NO_ACTION"], recent)
    assert "**Acme**" in pair.system
    assert "- **Sales** (id: pl-1)\n  Stages: New -> Qualified" in pair.system
    assert "*No team members listed*" in pair.system
    assert "- **Source:** EMAIL" in pair.user
    assert "- **Sender Email:** lead@example.com" in pair.user
    assert "- ASSIGN_PIPELINE (intake): Confidence 0.90, Status: EXECUTED" in pair.user
    assert "## Available Actions\n\n- ASSIGN_PIPELINE\n- NO_ACTION" in pair.user
    assert "## Structured Data" not in pair.user
