"""
Workflow templates stored as ``<templates_dir>/<name>.json``.
"""
import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from shared.errors import WorkflowError
from shared.logger import get_logger

logger = get_logger(__name__)

# Engine-assigned fields that must not be copied into a new workflow.
RUNTIME_FIELDS = ("id", "active", "createdAt", "updatedAt", "versionId")


def instantiate(
    template: Mapping[str, Any],
    name: str,
    settings: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Copy ``template`` under a new name, merging ``settings`` over the template's own."""
    workflow = {k: copy.deepcopy(v) for k, v in template.items() if k not in RUNTIME_FIELDS}
    workflow["name"] = name
    workflow["settings"] = {**(template.get("settings") or {}), **(settings or {})}
    return workflow


class TemplateStore:
    def __init__(self, templates_dir: Union[str, Path] = "./templates") -> None:
        self.templates_dir = Path(templates_dir)

    def path_for(self, name: str) -> Path:
        return self.templates_dir / f"{name}.json"

    def list(self) -> List[str]:
        if not self.templates_dir.is_dir():
            return []
        return sorted(p.stem for p in self.templates_dir.glob("*.json"))

    def load(self, name: str) -> Dict[str, Any]:
        path = self.path_for(name)
        if not path.is_file():
            raise WorkflowError(f"Template not found: {name}", {"path": str(path)})
        try:
            template = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise WorkflowError(f"Failed to parse template {name}: {e}", {"path": str(path)}) from e
        if not isinstance(template, dict):
            raise WorkflowError(f"Template {name} must be a JSON object", {"path": str(path)})
        return template

    def save(self, name: str, workflow: Mapping[str, Any]) -> Path:
        """Write ``workflow`` as a template, dropping engine-assigned fields."""
        self.templates_dir.mkdir(parents=True, exist_ok=True)
        template = {k: v for k, v in workflow.items() if k not in RUNTIME_FIELDS}
        path = self.path_for(name)
        path.write_text(json.dumps(template, indent=2), encoding="utf-8")
        logger.debug(f"Saved template {name} to {path}")
        return path

    def instantiate(
        self,
        name: str,
        workflow_name: str,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        return instantiate(self.load(name), workflow_name, settings)


__all__ = ["RUNTIME_FIELDS", "TemplateStore", "instantiate"]
