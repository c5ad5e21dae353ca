from __future__ import annotations

from pathlib import Path

import pytest

from opsagent.templates import TemplateConfigError, TemplateNotFoundError, load_templates


TEMPLATES_YAML = """
templates:
  - id: onboard-client
    label: Onboard Client
    category: Onboarding
    department: Operations
    staffRole: account_manager
    typicalMinutes: 45
    agentConfig:
      allowedActions: [SET_STATUS, TAG_TASK, NO_OP]
      completionCriteria:
        status: DONE
  - id: renewal
    label: Contract Renewal
    category: Sales
    department: Revenue
    staffRole: sales_rep
    typicalMinutes: 30
    agentConfig:
      allowedActions: [PING_CUSTOMER, TELEPORT]
      completionCriteria:
        status: DONE
"""


def test_load_templates(tmp_path: Path) -> None:
    path = tmp_path / "templates.yaml"
    path.write_text(TEMPLATES_YAML, encoding="utf-8")
    registry = load_templates(path)
    assert registry.ids() == ["onboard-client", "renewal"]
    assert len(registry) == 2
    assert "renewal" in registry
    template = registry.get("onboard-client")
    assert template.agent_config.allowed_actions == ["SET_STATUS", "TAG_TASK", "NO_OP"]
    assert template.agent_config.completion_criteria.required_steps_completed is None
    with pytest.raises(TemplateNotFoundError):
        registry.get("missing")


def test_template_list_at_top_level(tmp_path: Path) -> None:
    path = tmp_path / "templates.yaml"
    path.write_text(
        "- id: t\n  label: T\n  category: c\n  department: d\n  staffRole: r\n  typicalMinutes: 5\n"
        "  agentConfig:\n    allowedActions: [NO_OP]\n    completionCriteria: {status: DONE}\n",
        encoding="utf-8",
    )
    assert load_templates(path).ids() == ["t"]


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("", "template file is empty."),
        ("templates: {id: x}", "templates must be a list."),
        ("templates:\n  - id: x\n", "templates[0]"),
        ("templates:\n  - just-a-string\n", "templates[0] must be a mapping."),
    ],
)
def test_invalid_template_files(tmp_path: Path, content: str, message: str) -> None:
    path = tmp_path / "templates.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(TemplateConfigError) as excinfo:
        load_templates(path)
    assert message in str(excinfo.value)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(TemplateConfigError, match="template file not found"):
        load_templates(tmp_path / "nope.yaml")


def test_duplicate_ids_rejected(tmp_path: Path) -> None:
    path = tmp_path / "templates.yaml"
    first = TEMPLATES_YAML.split("  - id: renewal")[0]
    path.write_text(first + first.split("templates:\n")[1], encoding="utf-8")
    with pytest.raises(TemplateConfigError, match="duplicate template id"):
        load_templates(path)
