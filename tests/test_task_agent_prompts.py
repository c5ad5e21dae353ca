from __future__ import annotations

from datetime import datetime, timezone

from conftest import make_template
from opsagent.prompts.task_agent import (
    NO_DECISIONS_MARKER,
    build_action_types_reference,
    build_recent_decisions_summary,
    build_system_prompt,
    build_task_agent_prompts,
)
from opsagent.tasks import AgentDecision, DecisionLogEntry


def _entry(entry_id: str, reasoning: str) -> DecisionLogEntry:
    return DecisionLogEntry(
        id=entry_id,
        task_id="task-1",
        decision=AgentDecision.model_validate(
            {"reasoning": reasoning, "actions": [{"type": "TAG_TASK", "add": ["x"]}, {"type": "NO_OP", "reason": "n"}]}
        ),
        applied_at=datetime(2024, 1, 14, 9, 0, tzinfo=timezone.utc),
    )


def test_prompts_are_deterministic(template, task, event):
    first = build_task_agent_prompts(template, task, event, [])
    second = build_task_agent_prompts(template, task, event, [])
    assert first == second


def test_system_prompt_lists_only_allowed_actions(template):
    system = build_system_prompt(template)
    assert "**Allowed Actions**: SET_STATUS, TAG_TASK, NO_OP" in system
    assert "- SET_STATUS:" in system
    assert "- PING_CUSTOMER:" not in system
    assert "- Target Status: DONE" in system
    assert "- Required Steps: kickoff" in system
    assert "ADDITIONAL TEMPLATE INSTRUCTIONS" not in system


def test_unknown_allowed_action_is_omitted():
    template = make_template(allowed=["SET_STATUS", "ARCHIVE_FOREVER"], system_prompt="Be gentle.")
    system = build_system_prompt(template)
    assert "ARCHIVE_FOREVER" not in system
    assert build_action_types_reference(["ARCHIVE_FOREVER"]) == ""
    assert system.endswith("## ADDITIONAL TEMPLATE INSTRUCTIONS\n\nBe gentle.")


def test_user_prompt_without_history(template, task, event):
    user = build_task_agent_prompts(template, task, event, []).user
    assert NO_DECISIONS_MARKER in user
    assert "## RECENT DECISIONS (Last 0)" in user
    assert "**Event Type**: task.status_changed" in user
    assert "**Occurred At**: 2024-01-15T10:30:00.000Z" in user
    assert '"templateId": "onboard-client"' in user
    assert user.endswith("Return ONLY a valid AgentDecision JSON object.")


def test_recent_decisions_summary():
    summary = build_recent_decisions_summary([_entry("abcdef123456", "tagged"), _entry("zz", "again")])
    assert summary.startswith("1. **Decision abcdef12** (2024-01-14T09:00:00.000Z):")
    assert "   - Actions: TAG_TASK, NO_OP" in summary
    assert "2. **Decision zz**" in summary
    assert build_recent_decisions_summary([]) == NO_DECISIONS_MARKER


def test_prompt_pair_to_messages(template, task, event):
    messages = build_task_agent_prompts(template, task, event, []).to_messages()
    assert [message.role for message in messages] == ["system", "user"]
