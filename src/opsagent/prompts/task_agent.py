"""Prompts for the base task agent.

The system prompt describes the template and lists exactly the action types
the template allows; the user prompt carries the task snapshot, the
triggering event and a bounded window of recent decisions.
"""

from __future__ import annotations

from opsagent.prompts.base import PromptPair, iso_utc, pretty_json
from opsagent.tasks import DecisionLogEntry, TaskEvent, TaskInstance, TaskTemplate

ACTION_TYPE_REFERENCE = {
    "SET_STATUS": '{ "type": "SET_STATUS", "toStatus": "NEW" | "IN_PROGRESS" | "NEEDS_REVIEW" | "BLOCKED" | "DONE" | "CANCELLED" }',
    "SET_STAGE": '{ "type": "SET_STAGE", "toStageKey": "stage-key-string" }',
    "ASSIGN_STAFF": '{ "type": "ASSIGN_STAFF", "strategy": "LEAST_BUSY_IN_ROLE" | "KEEP_EXISTING" | "UNASSIGN", "role"?: "optional-role" }',
    "TAG_TASK": '{ "type": "TAG_TASK", "add": ["tag1", "tag2"], "remove"?: ["tag3"] }',
    "PING_CUSTOMER": '{ "type": "PING_CUSTOMER", "channel": "EMAIL" | "SMS" | "CHAT", "templateHint": "template-name" }',
    "ADD_INTERNAL_NOTE": '{ "type": "ADD_INTERNAL_NOTE", "note": "internal note text" }',
    "ESCALATE": '{ "type": "ESCALATE", "reason": "escalation reason", "targetRole"?: "optional-role" }',
    "NO_OP": '{ "type": "NO_OP", "reason": "reason for no action" }',
}

NO_DECISIONS_MARKER = "*No previous decisions for this task*"


def build_action_types_reference(allowed_actions: list[str]) -> str:
    """One line per allowed action; types without a known shape are skipped."""
    return "\n".join(
        f"- {action}: {ACTION_TYPE_REFERENCE[action]}"
        for action in allowed_actions
        if action in ACTION_TYPE_REFERENCE
    )


def build_system_prompt(template: TaskTemplate) -> str:
    config = template.agent_config
    allowed = [action for action in config.allowed_actions if action in ACTION_TYPE_REFERENCE]
    allowed_str = ", ".join(allowed)
    criteria = config.completion_criteria
    target_status = criteria.status.value

    criteria_lines = [f"- Target Status: {target_status}"]
    if criteria.required_steps_completed:
        criteria_lines.append(f"- Required Steps: {', '.join(criteria.required_steps_completed)}")

    sections = [
        "You are the OpsAgent Base Task Agent.",
        "You manage BUSINESS TASKS represented as JSON. Each task is created from a Task Template and contains:\n"
        "- metadata (type, category, pipeline, stage, priority, department, staff role),\n"
        "- a list of steps,\n"
        "- a timeline with an expected duration,\n"
        "- status and stage,\n"
        "- assignment info,\n"
        "- override flags.",
        "You DO NOT chat with end users. You only decide what the automation system should do next for a task.",
        "## TEMPLATE-SPECIFIC INSTRUCTIONS",
        f"**Task Type**: {template.label} ({template.id})\n"
        f"**Category**: {template.category}\n"
        f"**Department**: {template.department}\n"
        f"**Staff Role**: {template.staff_role}\n"
        f"**Typical Duration**: {template.typical_minutes} minutes\n"
        f"**Allowed Actions**: {allowed_str}",
        "**Completion Criteria**:\n" + "\n".join(criteria_lines),
        "## CORE RULES",
        "You must follow these rules:",
        "1. **Think in small, safe steps.** Prefer incremental progress over large changes.",
        "2. **Respect the task template**:\n"
        f"   - Only perform actions listed in template.agentConfig.allowedActions: [{allowed_str}]\n"
        f'   - Drive the task towards completion criteria: status="{target_status}"\n'
        "   - Follow the defined workflow steps",
        "3. **Respect human overrides**:\n"
        "   - If task.override.overridden is true, DO NOTHING and return a NO_OP action explaining why.",
        "4. **Respect status and stage semantics**:\n"
        '   - status "DONE" or "CANCELLED" usually means the task is complete. Prefer NO_OP unless something is clearly wrong.\n'
        '   - status "BLOCKED" requires investigation before taking action.',
        "5. **Use the event**:\n"
        "   - React only to what changed: e.g. task.created, task.status_changed, task.sla_breached, etc.\n"
        "   - Don't make the same decision twice for the same event.",
        "6. **Be deterministic and auditable**:\n"
        "   - Use the existing task data and recent decisions to be consistent.\n"
        "   - Avoid random behavior. Make decisions that can be explained.\n"
        "   - Reference previous decisions in your reasoning.",
        "## OUTPUT FORMAT",
        "You must ALWAYS respond with a single JSON object of the form:",
        "{\n"
        '  "reasoning": "...short explanation referencing the event, task state, and template rules...",\n'
        '  "actions": [\n'
        '    { "type": "...", ... }\n'
        "  ]\n"
        "}",
        "**NO EXTRA KEYS. NO PROSE OUTSIDE JSON.**",
        "If you want to do nothing, return a single NO_OP action with a clear reason:\n"
        "{\n"
        '  "reasoning": "Task is already complete / overridden / etc.",\n'
        '  "actions": [{ "type": "NO_OP", "reason": "..." }]\n'
        "}",
        "## AVAILABLE ACTION TYPES",
        build_action_types_reference(config.allowed_actions),
    ]
    if config.system_prompt:
        sections.extend(["## ADDITIONAL TEMPLATE INSTRUCTIONS", config.system_prompt])
    return "\n\n".join(sections)


def build_recent_decisions_summary(recent_decisions: list[DecisionLogEntry]) -> str:
    if not recent_decisions:
        return NO_DECISIONS_MARKER
    entries = []
    for idx, entry in enumerate(recent_decisions, start=1):
        action_types = ", ".join(action.type for action in entry.decision.actions)
        entries.append(
            f"{idx}. **Decision {entry.id[:8]}** ({iso_utc(entry.applied_at)}):\n"
            f"   - Reasoning: {entry.decision.reasoning}\n"
            f"   - Actions: {action_types}"
        )
    return "\n\n".join(entries)


def build_user_prompt(
    task: TaskInstance,
    event: TaskEvent,
    recent_decisions: list[DecisionLogEntry],
) -> str:
    return (
        "## CURRENT TASK INSTANCE\n\n"
        f"```json\n{pretty_json(task.to_wire())}\n```\n\n"
        "## TRIGGERING EVENT\n\n"
        f"**Event Type**: {event.name}\n"
        f"**Event ID**: {event.id}\n"
        f"**Occurred At**: {iso_utc(event.occurred_at)}\n\n"
        f"```json\n{pretty_json(event.payload)}\n```\n\n"
        f"## RECENT DECISIONS (Last {len(recent_decisions)})\n\n"
        f"{build_recent_decisions_summary(recent_decisions)}\n\n"
        "---\n\n"
        "Based on the above information, analyze the event and task state, then decide what should "
        "happen NEXT for this task.\n\n"
        "Follow the system instructions carefully. Return ONLY a valid AgentDecision JSON object."
    )


def build_task_agent_prompts(
    template: TaskTemplate,
    task: TaskInstance,
    event: TaskEvent,
    recent_decisions: list[DecisionLogEntry],
) -> PromptPair:
    return PromptPair(
        system=build_system_prompt(template),
        user=build_user_prompt(task, event, recent_decisions),
    )
