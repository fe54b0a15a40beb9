"""Create a project workspace from an idea and run its workflow."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel

from .config import PmConfig, load_config
from .constants import (
    IDEA_FILENAME,
    JOURNAL_FILENAME,
    META_FILENAME,
    PM_DIRNAME,
    PROMPT_FILENAME,
    TRANSCRIPT_FILENAME,
)
from .contracts import EventRecord, RunContext, WorkflowConfigError
from .engine import ControlFlowEngine, WorkflowRunner
from .execute import Reporter, StepExecutor, Verifier
from .journal import EventJournal, get_journal
from .report import generate_report
from .template import render_template, template_data
from .verify import run_verify
from .workflow import load_workflow

logger = logging.getLogger(__name__)


class InboxResult(BaseModel):
    status: Literal["success", "failed"]
    project_dir: str
    workflow_source: str


def pm_version() -> str:
    try:
        return metadata.version("pmflow")
    except metadata.PackageNotFoundError:
        return "0.1.0"


def stringify_var(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def _pm_event(journal: EventJournal, kind: str, payload: dict) -> None:
    await journal.append(EventRecord(source="pm", kind=kind, payload=payload))


async def run_inbox(
    root_dir: str | Path,
    project_name: str,
    idea: str,
    workflow_path: Optional[str | Path] = None,
    config: Optional[PmConfig] = None,
    verifier: Verifier = run_verify,
    reporter: Reporter = generate_report,
) -> InboxResult:
    """Scaffold ``<root>/<projects_dir>/<project_name>`` and run its workflow.

    Args:
        root_dir: Directory holding the projects directory.
        project_name: Name of the new project; must not exist yet.
        idea: Free-text idea handed to the workflow as ``{{idea}}``.
        workflow_path: Optional explicit workflow file.
        config: Loaded configuration (defaults to ``load_config()``).

    Returns:
        The overall status, project directory and workflow source.

    Raises:
        FileExistsError: The project directory already exists.
        WorkflowConfigError: The workflow cannot be executed as declared.
    """
    config = config or load_config()
    project_dir = Path(root_dir) / config.projects_dir / project_name
    if project_dir.exists():
        raise FileExistsError(f"Project already exists: {project_dir}")

    pm_dir = project_dir / PM_DIRNAME
    pm_dir.mkdir(parents=True)
    journal_path = pm_dir / JOURNAL_FILENAME
    transcript_path = pm_dir / TRANSCRIPT_FILENAME

    (pm_dir / IDEA_FILENAME).write_text(f"{idea}\n", encoding="utf-8")
    meta = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pm_version": pm_version(),
        "project_name": project_name,
    }
    (pm_dir / META_FILENAME).write_text(json.dumps(meta, indent=2) + "\n", encoding="utf-8")
    (pm_dir / PROMPT_FILENAME).write_text("", encoding="utf-8")
    transcript_path.write_text("", encoding="utf-8")

    journal = get_journal(journal_path, config)
    await _pm_event(
        journal,
        "lifecycle",
        {"step": "inbox_start", "project_name": project_name, "project_dir": str(project_dir)},
    )
    for name in (IDEA_FILENAME, META_FILENAME, PROMPT_FILENAME):
        await _pm_event(journal, "file_write", {"path": f"{PM_DIRNAME}/{name}"})

    try:
        loaded = load_workflow(root_dir, project_dir, workflow_path, config)
    except WorkflowConfigError as exc:
        await _pm_event(
            journal, "result", {"status": "failed", "last_exit_code": None, "error": str(exc)}
        )
        raise
    await _pm_event(
        journal,
        "workflow_loaded",
        {"source": loaded.source, "step_count": len(loaded.workflow.steps)},
    )

    ctx = RunContext(
        project_name=project_name,
        idea=idea,
        project_dir=str(project_dir),
        pm_dir=str(pm_dir),
        journal_path=str(journal_path),
        transcript_path=str(transcript_path),
        vars={k: stringify_var(v) for k, v in loaded.workflow.vars.items()},
    )
    seed = template_data(ctx)
    ctx.vars = {k: render_template(v, seed) for k, v in ctx.vars.items()}

    executor = StepExecutor(journal, config, verifier=verifier, reporter=reporter)
    runner = WorkflowRunner(ControlFlowEngine(journal, executor))
    logger.info(f"Running workflow from {loaded.source} for project {project_name}")
    try:
        success = await runner.run(loaded.workflow, ctx)
    except WorkflowConfigError as exc:
        await _pm_event(
            journal,
            "result",
            {"status": "failed", "last_exit_code": ctx.last_exit_code, "error": str(exc)},
        )
        raise

    status: Literal["success", "failed"] = "success" if success else "failed"
    await _pm_event(
        journal,
        "result",
        {
            "status": status,
            "last_exit_code": ctx.last_exit_code,
            "report_hint": f"pm report {project_name}",
        },
    )
    logger.info(f"Workflow finished with status {status}")
    return InboxResult(
        status=status, project_dir=str(project_dir), workflow_source=loaded.source
    )
