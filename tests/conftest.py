from __future__ import annotations

from datetime import datetime, timezone

import pytest

from opsagent.tasks import TaskEvent, TaskInstance, TaskTemplate


def make_template(allowed: list[str] | None = None, system_prompt: str | None = None) -> TaskTemplate:
    return TaskTemplate.model_validate(
        {
            "id": "onboard-client",
            "label": "Onboard Client",
            "category": "Onboarding",
            "department": "Operations",
            "staffRole": "account_manager",
            "typicalMinutes": 45,
            "agentConfig": {
                "allowedActions": allowed or ["SET_STATUS", "TAG_TASK", "NO_OP"],
                "completionCriteria": {"status": "DONE", "requiredStepsCompleted": ["kickoff"]},
                "systemPrompt": system_prompt,
            },
        }
    )


def make_task(overridden: bool = False, task_id: str = "task-1") -> TaskInstance:
    return TaskInstance.model_validate(
        {
            "id": task_id,
            "templateId": "onboard-client",
            "status": "IN_PROGRESS",
            "stageKey": "kickoff",
            "override": {"overridden": overridden, "reason": "manager took over" if overridden else None},
            "steps": [{"key": "kickoff", "label": "Kickoff call", "completed": False}],
            "tags": ["new"],
        }
    )


@pytest.fixture
def template() -> TaskTemplate:
    return make_template()


@pytest.fixture
def task() -> TaskInstance:
    return make_task()


@pytest.fixture
def event() -> TaskEvent:
    return TaskEvent(
        name="task.status_changed",
        id="evt-1",
        occurred_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        payload={"from": "NEW", "to": "IN_PROGRESS"},
    )
