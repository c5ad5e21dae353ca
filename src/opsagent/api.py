"""FastAPI service exposing the stateless pieces of the decision core."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from pydantic import BaseModel, Field

from opsagent.config import Settings
from opsagent.interpreter import DecisionRejected, interpret_decision
from opsagent.prompts.notification import (
    ChannelPreferences,
    determine_urgency_level,
    generate_short_message,
    select_channels,
)
from opsagent.prompts.task_agent import build_task_agent_prompts
from opsagent.schemas import SCHEMA_VERSION
from opsagent.tasks import DecisionLogEntry, TaskEvent, TaskInstance, TaskTemplate

app = FastAPI(title="OpsAgent")


class InterpretRequest(BaseModel):
    template: TaskTemplate
    task: TaskInstance
    decision: dict[str, Any]


class InterpretResponse(BaseModel):
    accepted: bool
    effects: list[dict[str, Any]] = Field(default_factory=list)
    rejection: dict[str, Any] | None = None


class TaskPromptRequest(BaseModel):
    template: TaskTemplate
    task: TaskInstance
    event: TaskEvent
    recent_decisions: list[DecisionLogEntry] = Field(default_factory=list)


class PromptResponse(BaseModel):
    system: str
    user: str


class UrgencyRequest(BaseModel):
    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    preferences: ChannelPreferences | None = None


class UrgencyResponse(BaseModel):
    urgency: str
    channels: list[str]
    short_message: str


@app.get("/health")
async def health() -> dict[str, str]:
    settings = Settings()
    return {"status": "ok", "provider": settings.provider, "schema_version": SCHEMA_VERSION}


@app.post("/interpret", response_model=InterpretResponse)
async def interpret(request: InterpretRequest) -> InterpretResponse:
    try:
        authorized = interpret_decision(request.decision, request.template, request.task)
    except DecisionRejected as rejection:
        return InterpretResponse(accepted=False, rejection=rejection.to_dict())
    return InterpretResponse(
        accepted=True, effects=[effect.to_dict() for effect in authorized.effects]
    )


@app.post("/prompts/task-agent", response_model=PromptResponse)
async def task_agent_prompt(request: TaskPromptRequest) -> PromptResponse:
    prompts = build_task_agent_prompts(
        request.template, request.task, request.event, request.recent_decisions
    )
    return PromptResponse(system=prompts.system, user=prompts.user)


@app.post("/notifications/urgency", response_model=UrgencyResponse)
async def notification_urgency(request: UrgencyRequest) -> UrgencyResponse:
    urgency = determine_urgency_level(request.event_type, request.event_data)
    channels = select_channels(urgency, request.preferences)
    data = {key: None if value is None else str(value) for key, value in request.event_data.items()}
    return UrgencyResponse(
        urgency=urgency.value,
        channels=[channel.value for channel in channels],
        short_message=generate_short_message(request.event_type, data),
    )
