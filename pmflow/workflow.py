"""Workflow discovery and YAML parsing."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ValidationError

from .config import PmConfig
from .contracts import Workflow, WorkflowConfigError

logger = logging.getLogger(__name__)

BUILTIN_WORKFLOW = Workflow.model_validate(
    {
        "steps": [
            {
                "id": "gen",
                "type": "codex",
                "prompt": "\n".join(
                    [
                        "You are building a prototype from the idea below.",
                        "",
                        "Requirements:",
                        "- prototype only",
                        "- log everything",
                        "- work in current folder",
                        "- never create or modify files under .pm/",
                        "",
                        "Idea:",
                        "{{idea}}",
                    ]
                ),
            },
            {"id": "verify", "type": "verify"},
            {"id": "report", "type": "report"},
        ]
    }
)


class LoadedWorkflow(BaseModel):
    """A parsed workflow and where it came from."""

    workflow: Workflow
    source: str


def resolve_workflow_path(
    root_dir: str | Path,
    project_dir: str | Path,
    explicit: Optional[str | Path] = None,
    config: Optional[PmConfig] = None,
) -> Optional[Path]:
    """Pick the workflow file for a run.

    An explicit path wins (relative paths are taken from ``root_dir``), then
    a workflow file inside the project, then the user's global default.
    """
    config = config or PmConfig()
    if explicit:
        explicit_path = Path(explicit)
        return explicit_path if explicit_path.is_absolute() else Path(root_dir) / explicit_path

    project_override = Path(project_dir) / config.workflow_filename
    if project_override.exists():
        return project_override

    global_default = Path(config.global_workflow).expanduser()
    if global_default.exists():
        return global_default
    return None


def parse_workflow(raw: Any) -> Workflow:
    """Validate a decoded YAML document into a ``Workflow``."""
    if not isinstance(raw, dict):
        raise WorkflowConfigError("Workflow file must parse to an object.")
    if not isinstance(raw.get("steps"), list):
        raise WorkflowConfigError("Workflow must contain 'steps' array.")
    try:
        return Workflow.model_validate(raw)
    except ValidationError as exc:
        raise WorkflowConfigError(f"Invalid workflow definition: {exc}") from exc


def load_workflow(
    root_dir: str | Path,
    project_dir: str | Path,
    explicit: Optional[str | Path] = None,
    config: Optional[PmConfig] = None,
) -> LoadedWorkflow:
    """Load the workflow for a run, falling back to ``BUILTIN_WORKFLOW``."""
    path = resolve_workflow_path(root_dir, project_dir, explicit, config)
    if path is None:
        logger.info("No workflow file found, using builtin workflow")
        return LoadedWorkflow(workflow=BUILTIN_WORKFLOW, source="builtin")

    with open(path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise WorkflowConfigError(f"Cannot parse workflow {path}: {exc}") from exc
    workflow = parse_workflow(raw)
    logger.info(f"Loaded workflow from {path} ({len(workflow.steps)} steps)")
    return LoadedWorkflow(workflow=workflow, source=str(path))
