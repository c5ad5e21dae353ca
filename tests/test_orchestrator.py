from __future__ import annotations

from datetime import datetime, timezone

import pytest

from opsagent.errors import AuthenticationError, ServerError
from opsagent.interpreter import DecisionRejected
from opsagent.models.mock import ScriptedLLMClient
from opsagent.orchestration import DecisionType, Disposition
from opsagent.orchestrator import IntakeRouter, OrchestrationAgent
from opsagent.prompts.intake import IntakeRequest
from opsagent.prompts.orchestration import AgentInput, OrgContext
from opsagent.runtime.backoff import BackoffPolicy
from opsagent.runtime.rate_limit import RateLimiter

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
ORG = OrgContext(org_name="Acme", current_datetime=NOW)

CREATE_TASK = {
    "intent": "CREATE_TASK",
    "confidence": 0.92,
    "reasoning": "Customer asked for a callback",
    "actions": [{"type": "CREATE_TASK", "params": {"title": "Call back customer"}}],
}
CLASSIFIED = {
    "classification": {"category": "SUPPORT_REQUEST", "confidence": 0.88, "reasoning": "Login issue"},
    "urgency": {"level": 3, "reasoning": "Blocked user", "responseTime": "4 hours"},
    "routing": {"pipelineId": "pl-2", "assigneeId": None, "reasoning": "Support queue"},
    "flags": {"isSpam": False, "requiresHumanReview": False, "isDuplicate": False},
    "suggestedTitle": "Cannot log in",
}


def _input(text: str) -> AgentInput:
    return AgentInput(source="EMAIL", type="intake", raw_content=text, timestamp=NOW)


def _intake(body: str, subject: str | None = None) -> IntakeRequest:
    return IntakeRequest(source="EMAIL", subject=subject, body=body, sender_email="lead@example.com", timestamp=NOW)


def test_confident_decision_auto_executes():
    client = ScriptedLLMClient([CREATE_TASK])
    outcome = OrchestrationAgent(client, ORG).process(_input("Please call me back"))
    assert not outcome.used_fallback
    assert outcome.verdict.disposition is Disposition.AUTO_EXECUTE
    assert outcome.to_dict()["used_fallback"] is False
    user_prompt = client.calls[0]["messages"][-1].content
    assert "- CREATE_TASK" in user_prompt


def test_enabled_actions_limit_the_prompt():
    idle = {
        **CREATE_TASK,
        "intent": "NO_ACTION",
        "actions": [{"type": "NO_ACTION", "params": {"reason": "Nothing to do"}}],
    }
    client = ScriptedLLMClient([idle])
    agent = OrchestrationAgent(client, ORG, enabled_actions={DecisionType.NO_ACTION, DecisionType.ESCALATE})
    assert agent.available_actions() == ["ESCALATE", "NO_ACTION"]
    agent.process(_input("hello"))
    assert "## Available Actions\n\n- ESCALATE\n- NO_ACTION" in client.calls[0]["messages"][-1].content


def test_provider_failure_falls_back_to_rules():
    client = ScriptedLLMClient([AuthenticationError("Invalid API key", provider="openai")])
    agent = OrchestrationAgent(client, ORG, pipeline_ids={"sales-inquiries": "pl-9"})
    outcome = agent.process(_input("Urgent: pricing for the enterprise plan"), intake_id="in-1")
    assert outcome.used_fallback
    assert outcome.fallback_reason == "Invalid API key"
    assert outcome.verdict.disposition is Disposition.REQUIRE_APPROVAL
    assert [action.type for action in outcome.verdict.decision.actions] == [
        DecisionType.ASSIGN_PIPELINE,
        DecisionType.ESCALATE,
    ]
    assert outcome.verdict.decision.actions[0].params["pipelineId"] == "pl-9"


def test_transient_failures_are_retried_before_falling_back():
    sleeps: list[float] = []
    client = ScriptedLLMClient([ServerError("boom", provider="openai"), CREATE_TASK])
    agent = OrchestrationAgent(client, ORG, backoff=BackoffPolicy(delays_ms=(10,)), sleep=sleeps.append)
    outcome = agent.process(_input("Please call me back"))
    assert not outcome.used_fallback
    assert len(sleeps) == 1


def test_invalid_decision_falls_back():
    bad = {**CREATE_TASK, "actions": [{"type": "CREATE_TASK", "params": {"title": ""}}]}
    outcome = OrchestrationAgent(ScriptedLLMClient([bad]), ORG).process(_input("hello there"))
    assert outcome.used_fallback
    assert outcome.verdict.disposition is Disposition.REQUIRE_APPROVAL
    assert [action.type for action in outcome.verdict.decision.actions] == [DecisionType.NO_ACTION]


def test_disabled_fallback_reraises():
    client = ScriptedLLMClient([AuthenticationError("Invalid API key", provider="openai")])
    with pytest.raises(AuthenticationError):
        OrchestrationAgent(client, ORG, enable_fallback=False).process(_input("hello"))

    bad = {**CREATE_TASK, "actions": [{"type": "CREATE_TASK", "params": {"title": ""}}]}
    with pytest.raises(DecisionRejected):
        OrchestrationAgent(ScriptedLLMClient([bad]), ORG, enable_fallback=False).process(_input("hello"))


def test_fallback_skips_pipeline_assignment_when_disabled():
    client = ScriptedLLMClient([AuthenticationError("Invalid API key", provider="openai")])
    agent = OrchestrationAgent(client, ORG, enabled_actions={DecisionType.NO_ACTION, DecisionType.ESCALATE})
    outcome = agent.process(_input("pricing please"), intake_id="in-1")
    assert [action.type for action in outcome.verdict.decision.actions] == [DecisionType.NO_ACTION]


def test_orchestration_calls_count_against_the_limiter():
    limiter = RateLimiter(max_requests=1, window_ms=60000, clock=lambda: 0.0)
    client = ScriptedLLMClient([CREATE_TASK, CREATE_TASK])
    agent = OrchestrationAgent(client, ORG, rate_limiter=limiter, enable_fallback=False)
    agent.process(_input("Please call me back"))
    assert not limiter.check(client.credential_key).allowed


def test_intake_router_returns_model_classification():
    routing = IntakeRouter(ScriptedLLMClient([CLASSIFIED])).classify(_intake("I cannot log in", "Login"))
    assert not routing.used_fallback
    assert routing.classification.classification["category"] == "SUPPORT_REQUEST"
    assert routing.classification.suggested_title == "Cannot log in"


def test_intake_router_falls_back_to_keywords():
    client = ScriptedLLMClient([AuthenticationError("Invalid API key", provider="claude")])
    router = IntakeRouter(client, pipeline_ids={"sales-inquiries": "pl-9"})
    routing = router.classify(_intake("We need a demo ASAP, what is your pricing?", "Pricing"))
    assert routing.used_fallback
    assert routing.fallback_reason == "Invalid API key"
    classification = routing.classification
    assert classification.classification["category"] == "SALES_INQUIRY"
    assert classification.classification["confidence"] == 0.3
    assert classification.urgency["level"] >= 4
    assert classification.routing["pipelineId"] == "pl-9"
    assert classification.flags["requiresHumanReview"] is True
    assert classification.suggested_title == "Pricing"


def test_intake_spam_fallback_has_no_pipeline():
    client = ScriptedLLMClient([AuthenticationError("Invalid API key", provider="claude")])
    routing = IntakeRouter(client).classify(_intake("Congratulations winner, click here for free money"))
    assert routing.classification.flags["isSpam"] is True
    assert routing.classification.routing["pipelineId"] is None


def test_intake_router_reraises_without_fallback():
    client = ScriptedLLMClient([AuthenticationError("Invalid API key", provider="claude")])
    with pytest.raises(AuthenticationError):
        IntakeRouter(client, enable_fallback=False).classify(_intake("hello"))
