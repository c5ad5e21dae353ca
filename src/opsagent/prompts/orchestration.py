"""Prompts for the orchestration agent that routes raw inputs to actions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from opsagent.prompts.base import PromptPair, iso_utc, pretty_json


class PipelineInfo(BaseModel):
    id: str
    name: str
    description: str | None = None
    stages: list[str] = Field(default_factory=list)


class TeamMemberInfo(BaseModel):
    id: str
    name: str
    email: str = ""
    role: str
    is_available: bool = True


class OrgContext(BaseModel):
    org_name: str
    current_datetime: datetime
    timezone: str = "UTC"
    pipelines: list[PipelineInfo] = Field(default_factory=list)
    team_members: list[TeamMemberInfo] = Field(default_factory=list)


class AgentInput(BaseModel):
    source: Literal["EMAIL", "FORM", "CHAT", "API", "WEBHOOK", "SYSTEM"]
    type: str
    raw_content: str
    timestamp: datetime
    sender_email: str | None = None
    sender_name: str | None = None
    structured_data: dict[str, Any] = Field(default_factory=dict)


class RecentOrchestrationDecision(BaseModel):
    decision_type: str
    input_type: str
    confidence: float
    status: str


RESPONSE_FORMAT = """{
  "intent": "ASSIGN_PIPELINE|CREATE_TASK|CREATE_EVENT|UPDATE_EVENT|CANCEL_EVENT|SEND_NOTIFICATION|TRIGGER_AUTOMATION|ESCALATE|NO_ACTION",
  "confidence": 0.0,
  "reasoning": "string",
  "urgency": 3,
  "actions": [
    {"type": "ASSIGN_PIPELINE", "priority": 3, "params": {"intakeId": "string", "pipelineId": "string"}}
  ],
  "requiresApproval": false,
  "approvalReason": "string | null",
  "suggestedFollowUp": "string | null",
  "metadata": {}
}"""


def _pipeline_lines(org: OrgContext) -> str:
    if not org.pipelines:
        return "*No pipelines configured*"
    lines = []
    for pipeline in org.pipelines:
        line = f"- **{pipeline.name}** (id: {pipeline.id})"
        if pipeline.description:
            line += f": {pipeline.description}"
        if pipeline.stages:
            line += f"\n  Stages: {' -> '.join(pipeline.stages)}"
        lines.append(line)
    return "\n".join(lines)


def _team_lines(org: OrgContext) -> str:
    if not org.team_members:
        return "*No team members listed*"
    return "\n".join(
        f"- {member.name} (id: {member.id}, role: {member.role})"
        + ("" if member.is_available else " [unavailable]")
        for member in org.team_members
    )


def build_orchestration_system_prompt(org: OrgContext) -> str:
    sections = [
        f"You are the OpsAgent orchestration agent for **{org.org_name}**. You read incoming "
        "requests and decide which operational actions should follow.",
        "## Current Context\n"
        f"- Current Date/Time: {iso_utc(org.current_datetime)}\n"
        f"- Timezone: {org.timezone}",
        "## Pipelines\n" + _pipeline_lines(org),
        "## Team Members\n" + _team_lines(org),
        "## Guidelines\n"
        "1. Only use pipeline and member ids listed above.\n"
        "2. Prefer a single, well-formed action over several speculative ones.\n"
        "3. Escalate anything that mentions outages, security or data loss.\n"
        "4. Set requiresApproval when the action is irreversible or touches external parties.\n"
        "5. When nothing should happen, return a single NO_ACTION.",
        "## Confidence Scoring\n"
        "- 0.85 - 1.0: clear intent, all required parameters known; executes automatically\n"
        "- 0.5 - 0.84: likely intent or missing details; a human approves first\n"
        "- below 0.5: unclear; the decision is discarded",
        "## Response Format\nRespond with a single JSON object:\n" + RESPONSE_FORMAT,
    ]
    return "\n\n".join(sections)


def build_orchestration_user_prompt(
    agent_input: AgentInput,
    available_actions: list[str],
    recent_decisions: list[RecentOrchestrationDecision] | None = None,
) -> str:
    parts = [
        "## Input Information\n\n"
        f"- **Source:** {agent_input.source}\n"
        f"- **Type:** {agent_input.type}\n"
        f"- **Timestamp:** {iso_utc(agent_input.timestamp)}\n"
    ]
    if agent_input.sender_email:
        parts.append(f"- **Sender Email:** {agent_input.sender_email}\n")
    if agent_input.sender_name:
        parts.append(f"- **Sender Name:** {agent_input.sender_name}\n")
    parts.append(f"\n## Content\n\n{agent_input.raw_content}\n")
    if agent_input.structured_data:
        parts.append(
            f"\n## Structured Data\n\n```json\n{pretty_json(agent_input.structured_data)}\n```\n"
        )
    if recent_decisions:
        parts.append("\n## Recent Decisions\n\n")
        for decision in recent_decisions[:5]:
            parts.append(
                f"- {decision.decision_type} ({decision.input_type}): "
                f"Confidence {decision.confidence:.2f}, Status: {decision.status}\n"
            )
    parts.append("\n## Available Actions\n\n")
    parts.append("\n".join(f"- {action}" for action in available_actions))
    parts.append(
        "\n\n---\n\nBased on the above information, analyze the input and provide your "
        "decision in the required JSON format."
    )
    return "".join(parts)


def build_orchestration_prompts(
    org: OrgContext,
    agent_input: AgentInput,
    available_actions: list[str],
    recent_decisions: list[RecentOrchestrationDecision] | None = None,
) -> PromptPair:
    return PromptPair(
        system=build_orchestration_system_prompt(org),
        user=build_orchestration_user_prompt(agent_input, available_actions, recent_decisions),
    )
