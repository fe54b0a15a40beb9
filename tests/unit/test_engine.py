"""Control-flow engine and workflow runner tests."""

import pytest

from pmflow.contracts import (
    AgentStep,
    AuditTrailError,
    RepeatStep,
    ShellStep,
    StepResult,
    Workflow,
    WorkflowConfigError,
)
from pmflow.engine import ControlFlowEngine, WorkflowRunner, validate_steps

from conftest import ScriptedExecutor

FAIL = StepResult(success=False, exit_code=2, detail="boom")
OK = StepResult(success=True, exit_code=0)


def _engine(journal, executor):
    return ControlFlowEngine(journal, executor)


def _shell(step_id, **kwargs):
    return ShellStep(id=step_id, command="true", **kwargs)


@pytest.mark.asyncio
async def test_failing_step_is_attempted_retries_plus_one_times(journal, ctx):
    executor = ScriptedExecutor({"s1": [FAIL]})
    result = await _engine(journal, executor).execute_step(_shell("s1", retries=3), ctx)

    assert not result.success
    assert executor.calls == ["s1"] * 4
    starts = journal.of_kind("workflow_step_start")
    ends = journal.of_kind("workflow_step_end")
    assert [r.payload["attempt"] for r in starts] == [1, 2, 3, 4]
    assert [r.payload["attempt"] for r in ends] == [1, 2, 3, 4]
    assert all(r.payload["success"] is False for r in ends)


@pytest.mark.asyncio
async def test_retry_stops_at_first_success(journal, ctx):
    executor = ScriptedExecutor({"s1": [FAIL, OK]})
    result = await _engine(journal, executor).execute_step(_shell("s1", retries=5), ctx)

    assert result.success
    assert executor.calls == ["s1", "s1"]
    assert journal.kinds() == [
        "workflow_step_start",
        "workflow_step_end",
        "workflow_step_start",
        "workflow_step_end",
    ]


@pytest.mark.asyncio
async def test_exception_becomes_failed_attempt_with_error_event(journal, ctx):
    executor = ScriptedExecutor({"s1": [RuntimeError("exploded"), OK]})
    result = await _engine(journal, executor).execute_step(_shell("s1", retries=1), ctx)

    assert result.success
    errors = journal.of_kind("workflow_step_error")
    assert len(errors) == 1
    assert errors[0].payload == {"step_id": "s1", "attempt": 1, "message": "exploded"}
    first_end = journal.of_kind("workflow_step_end")[0]
    assert first_end.payload["exit_code"] == 1
    assert first_end.payload["detail"] == "exploded"


@pytest.mark.asyncio
async def test_audit_trail_errors_are_not_swallowed(journal, ctx):
    executor = ScriptedExecutor({"s1": [AuditTrailError("disk full")]})
    with pytest.raises(AuditTrailError):
        await _engine(journal, executor).execute_step(_shell("s1", retries=2), ctx)
    assert executor.calls == ["s1"]


@pytest.mark.asyncio
async def test_continue_on_error_reports_success_with_true_exit_code(journal, ctx):
    executor = ScriptedExecutor({"s1": [FAIL]})
    step = _shell("s1", retries=1, continue_on_error=True)
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert result.success
    assert result.exit_code == 2
    assert result.detail == "continue_on_error=true; boom"
    assert len(executor.calls) == 2


@pytest.mark.asyncio
async def test_false_guard_skips_without_attempt(journal, ctx):
    ctx.idea = ""
    ctx.last_exit_code = 7
    executor = ScriptedExecutor()
    step = _shell("s1", **{"if": "{{idea}}==''"})
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert result == StepResult(success=True, exit_code=7, detail="skipped by if")
    assert executor.calls == []
    assert journal.kinds() == ["workflow_step_skip"]
    assert journal.records[0].payload == {"step_id": "s1", "if": "{{idea}}==''"}


@pytest.mark.asyncio
async def test_true_guard_runs_normally(journal, ctx):
    ctx.idea = "I'd like a todo app"
    executor = ScriptedExecutor()
    step = _shell("s1", **{"if": "'{{idea}}'!=''"})
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert result.success
    assert executor.calls == ["s1"]


@pytest.mark.asyncio
async def test_record_false_suppresses_attempt_events(journal, ctx):
    executor = ScriptedExecutor({"s1": [RuntimeError("bad")]})
    step = _shell("s1", retries=1, record=False)
    await _engine(journal, executor).execute_step(step, ctx)

    assert journal.kinds() == ["workflow_step_error", "workflow_step_error"]


@pytest.mark.asyncio
async def test_repeat_without_until_runs_every_round(journal, ctx):
    executor = ScriptedExecutor()
    rounds_seen = []
    executor.on_execute = lambda step, c: rounds_seen.append(c.round)
    step = RepeatStep(id="loop", max_rounds=3, steps=[_shell("a"), _shell("b")])
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert result.success
    assert result.detail is None
    assert executor.calls == ["a", "b"] * 3
    assert rounds_seen == [1, 1, 2, 2, 3, 3]
    assert [r.payload["round"] for r in journal.of_kind("workflow_round_start")] == [1, 2, 3]
    assert [r.payload["round"] for r in journal.of_kind("workflow_round_end")] == [1, 2, 3]


@pytest.mark.asyncio
async def test_repeat_until_stops_early_and_succeeds(journal, ctx):
    executor = ScriptedExecutor()
    step = RepeatStep(id="loop", max_rounds=5, until="{{round}}==2", steps=[_shell("a")])
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert result.success
    assert result.detail == "until={{round}}==2"
    assert executor.calls == ["a", "a"]
    assert ctx.round == 2


@pytest.mark.asyncio
async def test_repeat_until_never_met_fails(journal, ctx):
    executor = ScriptedExecutor()
    step = RepeatStep(id="loop", max_rounds=2, until="{{round}}==9", steps=[_shell("a")])
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert not result.success
    assert executor.calls == ["a", "a"]


@pytest.mark.asyncio
async def test_repeat_round_ends_at_first_intolerable_failure(journal, ctx):
    executor = ScriptedExecutor({"a": [FAIL]})
    step = RepeatStep(id="loop", max_rounds=2, steps=[_shell("a"), _shell("b")])
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert not result.success
    assert executor.calls == ["a", "a"]
    round_ends = journal.of_kind("workflow_round_end")
    assert [r.payload["success"] for r in round_ends] == [False, False]


@pytest.mark.asyncio
async def test_repeat_tolerant_nested_failure_continues_round(journal, ctx):
    executor = ScriptedExecutor({"a": [FAIL]})
    step = RepeatStep(
        id="loop",
        max_rounds=1,
        steps=[_shell("a", continue_on_error=True), _shell("b")],
    )
    result = await _engine(journal, executor).execute_step(step, ctx)

    assert result.success
    assert executor.calls == ["a", "b"]


@pytest.mark.asyncio
async def test_nested_steps_keep_their_own_guards(journal, ctx):
    executor = ScriptedExecutor()
    step = RepeatStep(
        id="loop",
        max_rounds=3,
        steps=[_shell("a"), _shell("only-second", **{"if": "{{round}}==2"})],
    )
    await _engine(journal, executor).execute_step(step, ctx)

    assert executor.calls == ["a", "a", "only-second", "a"]
    assert len(journal.of_kind("workflow_step_skip")) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("rounds", [None, 0, -1])
async def test_repeat_requires_positive_bound(journal, ctx, rounds):
    executor = ScriptedExecutor()
    step = RepeatStep(id="loop", max_rounds=rounds, steps=[_shell("a")])
    with pytest.raises(WorkflowConfigError):
        await _engine(journal, executor).execute_step(step, ctx)
    assert executor.calls == []


@pytest.mark.asyncio
async def test_agent_step_without_prompt_is_config_error(journal, ctx):
    executor = ScriptedExecutor()
    with pytest.raises(WorkflowConfigError):
        await _engine(journal, executor).execute_step(AgentStep(id="gen", retries=3), ctx)
    assert executor.calls == []


def test_validate_steps_checks_nested_bodies():
    bad = RepeatStep(id="outer", max_rounds=1, steps=[RepeatStep(id="inner", steps=[])])
    with pytest.raises(WorkflowConfigError, match="inner"):
        validate_steps([bad])


@pytest.mark.asyncio
async def test_runner_stops_at_first_intolerable_failure(journal, ctx):
    executor = ScriptedExecutor({"s2": [FAIL]})
    workflow = Workflow(steps=[_shell("s1"), _shell("s2"), _shell("s3")])
    ok = await WorkflowRunner(_engine(journal, executor)).run(workflow, ctx)

    assert ok is False
    assert executor.calls == ["s1", "s2"]


@pytest.mark.asyncio
async def test_runner_tolerates_flagged_failures(journal, ctx):
    executor = ScriptedExecutor({"s2": [FAIL]})
    workflow = Workflow(
        steps=[_shell("s1"), _shell("s2", continue_on_error=True), _shell("s3")]
    )
    ok = await WorkflowRunner(_engine(journal, executor)).run(workflow, ctx)

    assert ok is True
    assert executor.calls == ["s1", "s2", "s3"]


@pytest.mark.asyncio
async def test_runner_rejects_invalid_tree_before_running(journal, ctx):
    executor = ScriptedExecutor()
    workflow = Workflow(
        steps=[_shell("s1"), RepeatStep(id="loop", max_rounds=0, steps=[_shell("a")])]
    )
    with pytest.raises(WorkflowConfigError):
        await WorkflowRunner(_engine(journal, executor)).run(workflow, ctx)
    assert executor.calls == []
