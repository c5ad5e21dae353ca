from __future__ import annotations

import json
from pathlib import Path

import pytest

from opsagent import cli


TEMPLATES_YAML = """
- id: onboard-client
  label: Onboard Client
  category: Onboarding
  department: Operations
  staffRole: account_manager
  typicalMinutes: 45
  agentConfig:
    allowedActions: [SET_STATUS, NO_OP]
    completionCriteria:
      status: DONE
"""


@pytest.fixture
def files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, Path]:
    for name in (
        "AGENT_DEFAULT_PROVIDER",
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "AGENT_AUDIT_DIR",
        "AGENT_AUDIT_DB",
        "AGENT_DECISION_DB",
    ):
        monkeypatch.delenv(name, raising=False)
    paths = {
        "templates": tmp_path / "templates.yaml",
        "task": tmp_path / "task.json",
        "event": tmp_path / "event.json",
        "decision": tmp_path / "decision.json",
    }
    paths["templates"].write_text(TEMPLATES_YAML, encoding="utf-8")
    paths["task"].write_text(
        json.dumps({"id": "task-9", "templateId": "onboard-client", "status": "IN_PROGRESS"}), encoding="utf-8"
    )
    paths["event"].write_text(
        json.dumps({"name": "task.created", "id": "evt-9", "occurredAt": "2024-01-15T10:30:00Z"}), encoding="utf-8"
    )
    return paths


def test_prompt_command(files, capsys) -> None:
    code = cli.main(["prompt", str(files["templates"]), str(files["task"]), str(files["event"])])
    out = capsys.readouterr().out
    assert code == 0
    assert out.startswith("=== SYSTEM ===\n")
    assert "=== USER ===" in out
    assert "**Event ID**: evt-9" in out


def test_interpret_command(files, capsys) -> None:
    files["decision"].write_text(
        json.dumps({"reasoning": "done", "actions": [{"type": "SET_STATUS", "toStatus": "DONE"}]}), encoding="utf-8"
    )
    code = cli.main(["interpret", str(files["templates"]), str(files["task"]), str(files["decision"])])
    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["accepted"] is True
    assert payload["effects"][0]["kind"] == "STATUS_UPDATE"


def test_interpret_command_rejection(files, capsys) -> None:
    files["decision"].write_text(
        json.dumps({"reasoning": "tag", "actions": [{"type": "TAG_TASK", "add": ["x"]}]}), encoding="utf-8"
    )
    code = cli.main(["interpret", str(files["templates"]), str(files["task"]), str(files["decision"])])
    payload = json.loads(capsys.readouterr().out)
    assert code == 1
    assert payload["rejection"]["rule"] == "ACTION_NOT_PERMITTED"


def test_decide_with_mock_client(files, capsys, tmp_path: Path) -> None:
    audit_dir = tmp_path / "audit"
    code = cli.main(
        [
            "decide",
            str(files["templates"]),
            str(files["task"]),
            str(files["event"]),
            "--mock",
            "--audit-dir",
            str(audit_dir),
        ]
    )
    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["status"] == "ACCEPTED"
    assert payload["authorized"]["effects"][0]["kind"] == "NO_OP"
    assert (audit_dir / "task-9.jsonl").exists()


def test_decide_without_key_reports_error(files, capsys) -> None:
    code = cli.main(["decide", str(files["templates"]), str(files["task"]), str(files["event"])])
    payload = json.loads(capsys.readouterr().out)
    assert code == 2
    assert payload["error"]["kind"] == "auth"


def test_apply_overrides_targets_selected_provider() -> None:
    args = cli.parse_args(
        ["decide", "t.yaml", "task.json", "event.json", "--provider", "openai", "--api-key", "k", "--model", "gpt-4o"]
    )
    settings = cli.apply_overrides(cli.Settings(), args)
    assert settings.provider == "openai"
    assert settings.openai_api_key == "k"
    assert settings.openai_model == "gpt-4o"
