"""Task domain models and the agent decision wire format."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    BLOCKED = "BLOCKED"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


ACTION_TYPES = (
    "SET_STATUS",
    "SET_STAGE",
    "ASSIGN_STAFF",
    "TAG_TASK",
    "PING_CUSTOMER",
    "ADD_INTERNAL_NOTE",
    "ESCALATE",
    "NO_OP",
)

StatusValue = Literal["NEW", "IN_PROGRESS", "NEEDS_REVIEW", "BLOCKED", "DONE", "CANCELLED"]


class DomainModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CompletionCriteria(DomainModel):
    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    required_steps_completed: list[str] | None = None


class AgentConfig(DomainModel):
    model_config = ConfigDict(frozen=True)

    allowed_actions: list[str]
    completion_criteria: CompletionCriteria
    system_prompt: str | None = None


class TaskTemplate(DomainModel):
    """Deployment-time template; read-only at runtime."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    category: str
    department: str
    staff_role: str
    typical_minutes: int
    agent_config: AgentConfig


class TaskOverride(DomainModel):
    overridden: bool = False
    reason: str | None = None
    by: str | None = None
    at: datetime | None = None


class TaskAssignment(DomainModel):
    assigned_to_id: str | None = None
    assigned_role: str | None = None


class TaskStep(DomainModel):
    key: str
    label: str | None = None
    completed: bool = False


class TaskInstance(DomainModel):
    """Snapshot of a business task, owned by the business-process subsystem."""

    model_config = ConfigDict(extra="allow")

    id: str
    template_id: str
    status: TaskStatus = TaskStatus.NEW
    stage_key: str | None = None
    assignment: TaskAssignment = Field(default_factory=TaskAssignment)
    override: TaskOverride = Field(default_factory=TaskOverride)
    steps: list[TaskStep] = Field(default_factory=list)
    timeline: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)


class TaskEvent(DomainModel):
    model_config = ConfigDict(frozen=True)

    name: str
    id: str
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class ActionModel(DomainModel):
    model_config = ConfigDict(extra="forbid", strict=True, frozen=True, populate_by_name=False)


class SetStatusAction(ActionModel):
    type: Literal["SET_STATUS"] = "SET_STATUS"
    to_status: StatusValue


class SetStageAction(ActionModel):
    type: Literal["SET_STAGE"] = "SET_STAGE"
    to_stage_key: str = Field(min_length=1)


class AssignStaffAction(ActionModel):
    type: Literal["ASSIGN_STAFF"] = "ASSIGN_STAFF"
    strategy: Literal["LEAST_BUSY_IN_ROLE", "KEEP_EXISTING", "UNASSIGN"]
    role: str | None = None


class TagTaskAction(ActionModel):
    type: Literal["TAG_TASK"] = "TAG_TASK"
    add: list[str]
    remove: list[str] | None = None


class PingCustomerAction(ActionModel):
    type: Literal["PING_CUSTOMER"] = "PING_CUSTOMER"
    channel: Literal["EMAIL", "SMS", "CHAT"]
    template_hint: str


class AddInternalNoteAction(ActionModel):
    type: Literal["ADD_INTERNAL_NOTE"] = "ADD_INTERNAL_NOTE"
    note: str = Field(min_length=1)


class EscalateAction(ActionModel):
    type: Literal["ESCALATE"] = "ESCALATE"
    reason: str = Field(min_length=1)
    target_role: str | None = None


class NoOpAction(ActionModel):
    type: Literal["NO_OP"] = "NO_OP"
    reason: str = Field(min_length=1)


TaskAction = Annotated[
    Union[
        SetStatusAction,
        SetStageAction,
        AssignStaffAction,
        TagTaskAction,
        PingCustomerAction,
        AddInternalNoteAction,
        EscalateAction,
        NoOpAction,
    ],
    Field(discriminator="type"),
]

ACTION_ADAPTER: TypeAdapter[TaskAction] = TypeAdapter(TaskAction)


class AgentDecision(DomainModel):
    """The model's answer: free-text reasoning plus ordered typed actions."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True, populate_by_name=False)

    reasoning: str
    actions: list[TaskAction] = Field(min_length=1)

    def serialize(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def parse(cls, raw: str) -> "AgentDecision":
        return cls.model_validate_json(raw)


class DecisionLogEntry(DomainModel):
    """Append-only record of an authorized decision."""

    model_config = ConfigDict(frozen=True)

    id: str
    task_id: str
    decision: AgentDecision
    applied_at: datetime


class DecisionEnvelope(BaseModel):
    """Outer shape of a decision with actions left raw for the interpreter."""

    model_config = ConfigDict(extra="forbid", strict=True)

    reasoning: str
    actions: list[dict[str, Any]] = Field(min_length=1)
