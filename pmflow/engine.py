"""Control flow around step execution: guards, repeats, retries, tolerance."""

from __future__ import annotations

import logging
from typing import Any, Dict, Sequence

from .contracts import (
    AgentStep,
    AuditTrailError,
    EventRecord,
    RepeatStep,
    RunContext,
    Step,
    StepResult,
    Workflow,
    WorkflowConfigError,
)
from .execute import StepExecutor
from .journal import EventJournal
from .template import evaluate_condition, template_data

logger = logging.getLogger(__name__)


def check_step(step: Step) -> None:
    """Raise ``WorkflowConfigError`` if ``step`` can never be executed."""
    if isinstance(step, RepeatStep):
        rounds = step.max_rounds
        if rounds is None or isinstance(rounds, bool) or rounds <= 0:
            raise WorkflowConfigError(f"repeat step '{step.id}' requires max_rounds > 0")
    elif isinstance(step, AgentStep) and not (step.prompt or step.prompt_file):
        raise WorkflowConfigError(f"codex step '{step.id}' requires prompt or prompt_file")


def validate_steps(steps: Sequence[Step]) -> None:
    """Check a whole step tree, including nested repeat bodies."""
    for step in steps:
        check_step(step)
        if isinstance(step, RepeatStep):
            validate_steps(step.steps)


class ControlFlowEngine:
    """Wraps the step executor with guard, repeat, retry and tolerance policy.

    Nested repeat bodies are executed through the same engine, so every
    nested step gets its own guard and retry handling.
    """

    def __init__(self, journal: EventJournal, executor: StepExecutor) -> None:
        self._journal = journal
        self._executor = executor

    async def _record(self, kind: str, payload: Dict[str, Any]) -> None:
        await self._journal.append(EventRecord(source="pm", kind=kind, payload=payload))

    async def execute_steps(self, steps: Sequence[Step], ctx: RunContext) -> StepResult:
        """Run ``steps`` in order, stopping at the first intolerable failure."""
        last = StepResult(success=True, exit_code=ctx.last_exit_code)
        for step in steps:
            last = await self.execute_step(step, ctx)
            if not last.success and not step.continue_on_error:
                break
        return last

    async def execute_step(self, step: Step, ctx: RunContext) -> StepResult:
        """Execute one declared step under its control-flow policy."""
        if step.condition and not evaluate_condition(step.condition, template_data(ctx)):
            logger.info(f"Skipping step '{step.id}': condition {step.condition!r} is false")
            if step.record:
                await self._record(
                    "workflow_step_skip", {"step_id": step.id, "if": step.condition}
                )
            return StepResult(success=True, exit_code=ctx.last_exit_code, detail="skipped by if")

        check_step(step)
        if isinstance(step, RepeatStep):
            return await self._run_repeat(step, ctx)

        result = await self._run_attempts(step, ctx)
        if not result.success and step.continue_on_error:
            logger.warning(
                f"Step '{step.id}' failed with exit code {result.exit_code}; continuing"
            )
            return StepResult(
                success=True,
                exit_code=result.exit_code,
                detail=f"continue_on_error=true; {result.detail or 'failed'}",
            )
        return result

    async def _run_repeat(self, step: RepeatStep, ctx: RunContext) -> StepResult:
        last = StepResult(success=True, exit_code=ctx.last_exit_code)
        until_met = False
        for round_number in range(1, step.max_rounds + 1):
            ctx.round = round_number
            if step.record:
                await self._record(
                    "workflow_round_start", {"step_id": step.id, "round": round_number}
                )
            last = await self.execute_steps(step.steps, ctx)
            if step.record:
                await self._record(
                    "workflow_round_end",
                    {
                        "step_id": step.id,
                        "round": round_number,
                        "success": last.success,
                        "exit_code": last.exit_code,
                    },
                )
            if step.until and evaluate_condition(step.until, template_data(ctx)):
                logger.info(f"Repeat step '{step.id}' satisfied until after round {round_number}")
                until_met = True
                break

        return StepResult(
            success=until_met if step.until else last.success,
            exit_code=ctx.last_exit_code,
            detail=f"until={step.until}" if step.until else None,
        )

    async def _run_attempts(self, step: Step, ctx: RunContext) -> StepResult:
        retries = max(0, int(step.retries or 0))
        last = StepResult(success=False, exit_code=None)
        for attempt in range(1, retries + 2):
            if step.record:
                await self._record(
                    "workflow_step_start",
                    {"step_id": step.id, "type": step.type, "attempt": attempt},
                )
            try:
                last = await self._executor.execute(step, ctx)
            except (WorkflowConfigError, AuditTrailError):
                raise
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error(f"Step '{step.id}' attempt {attempt} raised: {message}")
                last = StepResult(success=False, exit_code=1, detail=message)
                await self._record(
                    "workflow_step_error",
                    {"step_id": step.id, "attempt": attempt, "message": message},
                )
            if step.record:
                await self._record(
                    "workflow_step_end",
                    {
                        "step_id": step.id,
                        "type": step.type,
                        "attempt": attempt,
                        "success": last.success,
                        "exit_code": last.exit_code,
                        "detail": last.detail,
                    },
                )
            if last.success:
                break
            if attempt <= retries:
                logger.info(f"Retrying step '{step.id}' ({attempt}/{retries})")
        return last


class WorkflowRunner:
    """Runs the top-level steps of a workflow strictly in order."""

    def __init__(self, engine: ControlFlowEngine) -> None:
        self._engine = engine

    async def run(self, workflow: Workflow, ctx: RunContext) -> bool:
        """Return ``True`` unless a non-tolerant top-level step failed."""
        validate_steps(workflow.steps)
        for step in workflow.steps:
            result = await self._engine.execute_step(step, ctx)
            if not result.success and not step.continue_on_error:
                logger.error(f"Workflow stopped at step '{step.id}': {result.detail or 'failed'}")
                return False
        return True
