"""Command-line interface."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Sequence

from opsagent.config import Settings
from opsagent.errors import LLMError
from opsagent.factory import build_agent, build_client
from opsagent.interpreter import DecisionRejected, interpret_decision
from opsagent.prompts.task_agent import build_task_agent_prompts
from opsagent.tasks import TaskEvent, TaskInstance
from opsagent.templates import TemplateRegistry, load_templates


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="OpsAgent CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    prompt = sub.add_parser("prompt", help="Render task agent prompts")
    prompt.add_argument("templates", type=Path, help="Template YAML file")
    prompt.add_argument("task", type=Path, help="Task instance JSON file")
    prompt.add_argument("event", type=Path, help="Triggering event JSON file")

    interpret = sub.add_parser("interpret", help="Check a decision against a template")
    interpret.add_argument("templates", type=Path)
    interpret.add_argument("task", type=Path)
    interpret.add_argument("decision", type=Path, help="Decision JSON file")

    decide = sub.add_parser("decide", help="Run one decision cycle")
    decide.add_argument("templates", type=Path)
    decide.add_argument("task", type=Path)
    decide.add_argument("event", type=Path)
    decide.add_argument("--mock", action="store_true", dest="mock")
    decide.add_argument("--provider", choices=["openai", "claude"], dest="provider")
    decide.add_argument("--api-key", dest="api_key")
    decide.add_argument("--model", dest="model")
    decide.add_argument("--base-url", dest="base_url")
    decide.add_argument("--audit-dir", dest="audit_dir")
    decide.add_argument("--decision-db", dest="decision_db")
    decide.add_argument("--audit-db", dest="audit_db")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    data: dict[str, Any] = settings.model_dump()
    provider = getattr(args, "provider", None) or data["provider"]
    data["provider"] = provider
    prefix = "openai" if provider == "openai" else "anthropic"
    if getattr(args, "api_key", None):
        data[f"{prefix}_api_key"] = args.api_key
    if getattr(args, "model", None):
        data[f"{prefix}_model"] = args.model
    if getattr(args, "base_url", None):
        data[f"{prefix}_base_url"] = args.base_url
    if getattr(args, "audit_dir", None):
        data["audit_dir"] = args.audit_dir
    if getattr(args, "decision_db", None):
        data["decision_db_path"] = args.decision_db
    if getattr(args, "audit_db", None):
        data["audit_db_path"] = args.audit_db
    return Settings(**data)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _load(args: argparse.Namespace) -> tuple[TemplateRegistry, TaskInstance]:
    registry = load_templates(args.templates)
    task = TaskInstance.model_validate(_read_json(args.task))
    return registry, task


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    registry, task = _load(args)
    template = registry.get(task.template_id)

    if args.command == "prompt":
        event = TaskEvent.model_validate(_read_json(args.event))
        prompts = build_task_agent_prompts(template, task, event, [])
        print("=== SYSTEM ===")
        print(prompts.system)
        print("=== USER ===")
        print(prompts.user)
        return 0

    if args.command == "interpret":
        try:
            authorized = interpret_decision(_read_json(args.decision), template, task)
        except DecisionRejected as rejection:
            print(json.dumps({"accepted": False, "rejection": rejection.to_dict()}, indent=2))
            return 1
        print(json.dumps({"accepted": True, **authorized.to_dict()}, indent=2))
        return 0

    settings = apply_overrides(Settings(), args)
    event = TaskEvent.model_validate(_read_json(args.event))
    try:
        client = build_client(settings, use_mock=args.mock)
        outcome = build_agent(settings, client).decide(template, task, event)
    except LLMError as exc:
        print(json.dumps({"error": exc.to_dict()}, indent=2))
        return 2
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.accepted or outcome.authorized is not None else 1


if __name__ == "__main__":
    raise SystemExit(main())
