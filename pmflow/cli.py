"""Command line interface for pmflow."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from pmflow.config import PmConfig, load_config
from pmflow.contracts import AuditTrailError, WorkflowConfigError
from pmflow.inbox import run_inbox
from pmflow.report import generate_report

app = typer.Typer(help="Turn an idea into a project by running a workflow")

_state: dict = {}


def _config() -> PmConfig:
    config = _state.get("config")
    if config is None:
        config = load_config()
        _state["config"] = config
    return config


def _fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config: Optional[Path] = typer.Option(None, help="Path to a pm.config.yaml file"),
) -> None:
    """pm: run agent, shell, verify and report workflows for new projects."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state["config"] = load_config(str(config)) if config else None


@app.command("inbox")
def inbox(
    project_name: str,
    idea: List[str] = typer.Argument(..., help="Idea text; several words are joined"),
    workflow: Optional[Path] = typer.Option(None, help="Workflow YAML file to run"),
    root: Path = typer.Option(Path("."), help="Directory that holds the projects folder"),
) -> None:
    """
    Create a project from an idea and run its workflow.

    The project is created under <root>/projects/<project-name> with a .pm/
    directory holding the journal (run.jsonl), the transcript (session.log)
    and the generated report.

    Example:
        pm inbox todo-cli "a command line todo list"
        pm inbox todo-cli "a todo list" --workflow ./flows/iterate.yaml
    """
    idea_text = " ".join(idea).strip()
    if not idea_text:
        _fail('Missing arguments. Usage: pm inbox <project-name> "<idea>" [--workflow <path>]')

    try:
        result = asyncio.run(
            run_inbox(
                root.resolve(),
                project_name,
                idea_text,
                workflow_path=workflow,
                config=_config(),
            )
        )
    except (FileExistsError, WorkflowConfigError, AuditTrailError, OSError) as exc:
        _fail(str(exc))

    typer.echo(f"Status: {result.status}")
    typer.echo(f"Project: {result.project_dir}")
    typer.echo(f"Workflow: {result.workflow_source}")
    typer.echo(f"Report hint: pm report {project_name}")
    if result.status != "success":
        raise typer.Exit(code=1)


@app.command("report")
def report(
    project_name: str,
    root: Path = typer.Option(Path("."), help="Directory that holds the projects folder"),
) -> None:
    """Regenerate .pm/report.html for a project and print its path."""
    project_dir = root.resolve() / _config().projects_dir / project_name
    try:
        report_path = asyncio.run(generate_report(project_dir))
    except (OSError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(str(report_path))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
