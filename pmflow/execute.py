"""Single-attempt execution of workflow steps."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .config import PmConfig
from .constants import PM_DIRNAME, PROMPT_FILENAME
from .contracts import (
    AgentStep,
    EventRecord,
    ReportStep,
    RunContext,
    ShellStep,
    Step,
    StepResult,
    VerifyOutcome,
    VerifyStep,
    WorkflowConfigError,
)
from .journal import EventJournal
from .process import CommandExecutor, agent_invocation
from .report import generate_report
from .template import render_template, template_data
from .verify import run_verify

logger = logging.getLogger(__name__)

Verifier = Callable[[str, EventJournal, Optional[str]], Awaitable[VerifyOutcome]]
Reporter = Callable[[str], Awaitable[Path]]


def _command_id(prefix: str, step_id: str) -> str:
    return f"{prefix}-{step_id}-{uuid.uuid4().hex[:8]}"


class StepExecutor:
    """Executes one attempt of a step against the run context."""

    def __init__(
        self,
        journal: EventJournal,
        config: Optional[PmConfig] = None,
        verifier: Verifier = run_verify,
        reporter: Reporter = generate_report,
    ) -> None:
        self._journal = journal
        self._config = config or PmConfig()
        self._verifier = verifier
        self._reporter = reporter

    async def execute(self, step: Step, ctx: RunContext) -> StepResult:
        """Run ``step`` once and report whether it succeeded."""
        if isinstance(step, AgentStep):
            return await self._run_agent(step, ctx)
        if isinstance(step, ShellStep):
            return await self._run_shell(step, ctx)
        if isinstance(step, VerifyStep):
            return await self._run_verify(step, ctx)
        if isinstance(step, ReportStep):
            return await self._run_report(step, ctx)
        return StepResult(
            success=False, exit_code=1, detail=f"unsupported step type: {step.type}"
        )

    def _commands(self, ctx: RunContext) -> CommandExecutor:
        return CommandExecutor(self._journal, ctx.transcript_path)

    async def _run_agent(self, step: AgentStep, ctx: RunContext) -> StepResult:
        data = template_data(ctx)
        if step.prompt:
            prompt = render_template(step.prompt, data)
        elif step.prompt_file:
            prompt_path = Path(step.prompt_file)
            if not prompt_path.is_absolute():
                prompt_path = Path(ctx.project_dir) / prompt_path
            prompt = render_template(prompt_path.read_text(encoding="utf-8"), data)
        else:
            raise WorkflowConfigError(f"codex step '{step.id}' requires prompt or prompt_file")

        (Path(ctx.pm_dir) / PROMPT_FILENAME).write_text(f"{prompt}\n", encoding="utf-8")
        await self._journal.append(
            EventRecord(
                source="pm",
                kind="file_write",
                payload={"path": f"{PM_DIRNAME}/{PROMPT_FILENAME}", "step_id": step.id},
            )
        )

        command, args = agent_invocation(prompt, self._config.agent)
        result = await self._commands(ctx).run(
            source="codex_exec",
            cwd=ctx.project_dir,
            command=command,
            args=args,
            command_id=_command_id("codex", step.id),
            timeout=step.timeout_sec,
        )
        ctx.last_exit_code = result.code
        return StepResult(success=result.code == 0, exit_code=result.code)

    async def _run_shell(self, step: ShellStep, ctx: RunContext) -> StepResult:
        data = template_data(ctx)
        command = render_template(step.command, data)
        # relative working directories are taken from the project root
        cwd = ctx.project_dir
        if step.cwd:
            cwd = str(Path(ctx.project_dir, render_template(step.cwd, data)))
        result = await self._commands(ctx).run(
            source="shell",
            cwd=cwd,
            command=command,
            command_id=_command_id("shell", step.id),
            timeout=step.timeout_sec,
            use_shell=True,
        )
        ctx.last_exit_code = result.code
        return StepResult(success=result.code == 0, exit_code=result.code)

    async def _run_verify(self, step: VerifyStep, ctx: RunContext) -> StepResult:
        outcome = await self._verifier(ctx.project_dir, self._journal, ctx.transcript_path)
        ctx.verify = outcome
        ctx.last_exit_code = outcome.code
        if outcome.skipped:
            logger.info(f"Verify step '{step.id}' skipped: {outcome.reason}")
        return StepResult(
            success=outcome.passed or outcome.skipped,
            exit_code=outcome.code,
            detail=outcome.reason,
        )

    async def _run_report(self, step: ReportStep, ctx: RunContext) -> StepResult:
        report_path = await self._reporter(ctx.project_dir)
        await self._journal.append(
            EventRecord(
                source="pm",
                kind="report",
                payload={"step_id": step.id, "report_path": str(report_path)},
            )
        )
        return StepResult(success=True, exit_code=0)
