"""Core data contracts for pmflow workflows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

from .constants import STEP_TYPES

EventSource = Literal["pm", "codex_exec", "verify", "shell"]


class WorkflowConfigError(ValueError):
    """A workflow definition cannot be executed as declared."""


class AuditTrailError(RuntimeError):
    """The journal or transcript could not be written."""


class EventRecord(BaseModel):
    """One line of the run journal."""

    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: EventSource
    kind: str
    payload: Any = None

    def to_json(self) -> str:
        """Serialize the record to a single JSON line (without newline)."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "EventRecord":
        return cls.model_validate_json(data)


class CommandResult(BaseModel):
    """Outcome of one spawned process.

    ``code`` is ``None`` when the process was ended by a signal (``signal``
    then holds its name) or never reported an exit status.
    """

    code: Optional[int] = None
    signal: Optional[str] = None
    timed_out: bool = False


class StepResult(BaseModel):
    success: bool
    exit_code: Optional[int] = None
    detail: Optional[str] = None


class VerifyOutcome(BaseModel):
    """Result reported by the verification collaborator."""

    passed: bool = False
    command: str = ""
    code: Optional[int] = None
    skipped: bool = True
    reason: Optional[str] = None


class BaseStep(BaseModel):
    """Fields shared by every step kind."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    condition: Optional[str] = Field(default=None, alias="if")
    retries: int = 0
    continue_on_error: bool = False
    timeout_sec: Optional[float] = None
    record: bool = True

    @field_validator("retries", mode="before")
    @classmethod
    def _default_retries(cls, v: Any) -> Any:
        return 0 if v is None else v


class AgentStep(BaseStep):
    """Invoke the external coding agent with a rendered prompt."""

    type: Literal["codex"] = "codex"
    prompt: Optional[str] = None
    prompt_file: Optional[str] = None


class ShellStep(BaseStep):
    type: Literal["shell"] = "shell"
    command: str
    cwd: Optional[str] = None


class VerifyStep(BaseStep):
    type: Literal["verify"] = "verify"


class ReportStep(BaseStep):
    type: Literal["report"] = "report"


class RepeatStep(BaseStep):
    """Run nested steps for up to ``max_rounds`` rounds."""

    type: Literal["repeat"] = "repeat"
    max_rounds: Optional[int] = None
    until: Optional[str] = None
    steps: List["Step"] = Field(default_factory=list)


class UnsupportedStep(BaseStep):
    """A step whose ``type`` is not understood by the executor."""

    type: str


def _step_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in STEP_TYPES else "unsupported"


Step = Annotated[
    Union[
        Annotated[AgentStep, Tag("codex")],
        Annotated[ShellStep, Tag("shell")],
        Annotated[VerifyStep, Tag("verify")],
        Annotated[ReportStep, Tag("report")],
        Annotated[RepeatStep, Tag("repeat")],
        Annotated[UnsupportedStep, Tag("unsupported")],
    ],
    Discriminator(_step_tag),
]

RepeatStep.model_rebuild()


class Workflow(BaseModel):
    """Ordered top-level steps plus default variable bindings."""

    vars: Dict[str, Any] = Field(default_factory=dict)
    steps: List[Step] = Field(default_factory=list)

    @field_validator("vars", mode="before")
    @classmethod
    def _vars_mapping(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}


class RunContext(BaseModel):
    """Mutable state shared by every step of a single run."""

    project_name: str
    idea: str = ""
    project_dir: str
    pm_dir: str
    journal_path: str
    transcript_path: str
    vars: Dict[str, str] = Field(default_factory=dict)
    round: int = 0
    last_exit_code: Optional[int] = None
    verify: VerifyOutcome = Field(default_factory=VerifyOutcome)
