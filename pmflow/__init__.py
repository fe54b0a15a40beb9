"""pmflow: supervised agent, shell, verify and report workflows."""

from .contracts import (
    CommandResult,
    EventRecord,
    RunContext,
    StepResult,
    VerifyOutcome,
    Workflow,
    WorkflowConfigError,
)
from .engine import ControlFlowEngine, WorkflowRunner
from .execute import StepExecutor
from .inbox import run_inbox
from .journal import InMemoryJournal, JsonlJournal, get_journal
from .process import CommandExecutor

__version__ = "0.1.0"
__all__ = [
    "CommandExecutor",
    "CommandResult",
    "ControlFlowEngine",
    "EventRecord",
    "InMemoryJournal",
    "JsonlJournal",
    "RunContext",
    "StepExecutor",
    "StepResult",
    "VerifyOutcome",
    "Workflow",
    "WorkflowConfigError",
    "WorkflowRunner",
    "get_journal",
    "run_inbox",
]
