"""Shared fixtures for pmflow tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from pmflow.contracts import RunContext, Step, StepResult, VerifyOutcome
from pmflow.journal import InMemoryJournal


class ScriptedExecutor:
    """Stand-in for ``StepExecutor`` returning scripted results per step id.

    ``script[step_id]`` is a list of results (or exceptions to raise) handed
    out one per attempt; the last entry repeats once the list is exhausted.
    """

    def __init__(
        self,
        script: Optional[Dict[str, List[object]]] = None,
        on_execute: Optional[Callable[[Step, RunContext], None]] = None,
    ) -> None:
        self.script = script or {}
        self.on_execute = on_execute
        self.calls: List[str] = []

    async def execute(self, step: Step, ctx: RunContext) -> StepResult:
        self.calls.append(step.id)
        if self.on_execute:
            self.on_execute(step, ctx)
        outcomes = self.script.get(step.id, [StepResult(success=True, exit_code=0)])
        index = min(self.calls.count(step.id), len(outcomes)) - 1
        outcome = outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        ctx.last_exit_code = outcome.exit_code
        return outcome


def build_context(project_dir: Path, idea: str = "a tiny tool") -> RunContext:
    pm_dir = project_dir / ".pm"
    pm_dir.mkdir(parents=True, exist_ok=True)
    return RunContext(
        project_name="demo",
        idea=idea,
        project_dir=str(project_dir),
        pm_dir=str(pm_dir),
        journal_path=str(pm_dir / "run.jsonl"),
        transcript_path=str(pm_dir / "session.log"),
    )


@pytest.fixture
def journal() -> InMemoryJournal:
    return InMemoryJournal()


@pytest.fixture
def ctx(tmp_path: Path) -> RunContext:
    return build_context(tmp_path / "demo")


@pytest.fixture
def skipped_verifier():
    calls = []

    async def verifier(project_dir, journal, transcript_path):
        calls.append(project_dir)
        return VerifyOutcome(passed=False, command="", code=None, skipped=True, reason="nothing to run")

    verifier.calls = calls
    return verifier
