"""Task template loading."""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from pydantic import ValidationError
import yaml

from opsagent.structured import format_validation_error
from opsagent.tasks import ACTION_TYPES, TaskTemplate
from opsagent.util.logging import get_logger

logger = get_logger(__name__)


class TemplateConfigError(ValueError):
    """Raised when a template file is invalid."""


class TemplateNotFoundError(KeyError):
    """Raised when a task references a template that is not registered."""


class TemplateRegistry:
    """Read-only view over the deployed templates, keyed by id."""

    def __init__(self, templates: Iterable[TaskTemplate]) -> None:
        by_id: dict[str, TaskTemplate] = {}
        for template in templates:
            if template.id in by_id:
                raise TemplateConfigError(f"duplicate template id {template.id!r}.")
            by_id[template.id] = template
        self._templates: Mapping[str, TaskTemplate] = MappingProxyType(by_id)

    def get(self, template_id: str) -> TaskTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFoundError(template_id) from None

    def ids(self) -> list[str]:
        return sorted(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)


def parse_template(data: Any, context: str) -> TaskTemplate:
    if not isinstance(data, dict):
        raise TemplateConfigError(f"{context} must be a mapping.")
    try:
        template = TaskTemplate.model_validate(data)
    except ValidationError as exc:
        raise TemplateConfigError(f"{context}: {format_validation_error(exc)}") from exc
    unknown = [action for action in template.agent_config.allowed_actions if action not in ACTION_TYPES]
    if unknown:
        logger.warning("Template %s lists unsupported actions: %s", template.id, ", ".join(unknown))
    return template


def load_templates(path: Path) -> TemplateRegistry:
    if not path.exists():
        raise TemplateConfigError(f"template file not found at {path}.")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        raise TemplateConfigError("template file is empty.")
    if isinstance(data, dict):
        data = data.get("templates")
    if not isinstance(data, list):
        raise TemplateConfigError("templates must be a list.")
    return TemplateRegistry(
        parse_template(item, f"templates[{idx}]") for idx, item in enumerate(data)
    )
