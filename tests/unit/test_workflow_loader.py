"""Tests for workflow discovery and parsing."""

import pytest

from pmflow.config import PmConfig
from pmflow.contracts import AgentStep, RepeatStep, WorkflowConfigError
from pmflow.workflow import (
    BUILTIN_WORKFLOW,
    load_workflow,
    parse_workflow,
    resolve_workflow_path,
)

WORKFLOW_YAML = """
vars:
  lang: python
steps:
  - id: gen
    type: codex
    prompt: "Build {{idea}} in {{lang}}"
  - id: loop
    type: repeat
    max_rounds: 3
    until: "{{verify.passed}}==true"
    steps:
      - id: check
        type: verify
"""


@pytest.fixture
def isolated_config(tmp_path):
    return PmConfig(global_workflow=str(tmp_path / "no-global.yaml"))


def test_builtin_workflow_shape():
    assert [step.id for step in BUILTIN_WORKFLOW.steps] == ["gen", "verify", "report"]
    assert isinstance(BUILTIN_WORKFLOW.steps[0], AgentStep)
    assert "{{idea}}" in BUILTIN_WORKFLOW.steps[0].prompt


def test_falls_back_to_builtin(tmp_path, isolated_config):
    loaded = load_workflow(tmp_path, tmp_path / "proj", config=isolated_config)
    assert loaded.source == "builtin"
    assert loaded.workflow is BUILTIN_WORKFLOW


def test_explicit_path_is_relative_to_root(tmp_path, isolated_config):
    (tmp_path / "flows").mkdir()
    (tmp_path / "flows" / "wf.yaml").write_text(WORKFLOW_YAML, encoding="utf-8")

    loaded = load_workflow(tmp_path, tmp_path / "proj", "flows/wf.yaml", isolated_config)
    assert loaded.source == str(tmp_path / "flows" / "wf.yaml")
    assert loaded.workflow.vars == {"lang": "python"}
    loop = loaded.workflow.steps[1]
    assert isinstance(loop, RepeatStep)
    assert loop.max_rounds == 3
    assert loop.steps[0].id == "check"


def test_project_override_beats_global(tmp_path):
    project_dir = tmp_path / "proj"
    project_dir.mkdir()
    (project_dir / "pm.workflow.yaml").write_text(WORKFLOW_YAML, encoding="utf-8")
    global_file = tmp_path / "global.yaml"
    global_file.write_text("steps: []\n", encoding="utf-8")
    config = PmConfig(global_workflow=str(global_file))

    assert resolve_workflow_path(tmp_path, project_dir, None, config) == project_dir / "pm.workflow.yaml"
    (project_dir / "pm.workflow.yaml").unlink()
    assert resolve_workflow_path(tmp_path, project_dir, None, config) == global_file


def test_missing_explicit_file_raises(tmp_path, isolated_config):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path, tmp_path / "proj", "nope.yaml", isolated_config)


@pytest.mark.parametrize(
    "raw,message",
    [
        (["not", "a", "mapping"], "must parse to an object"),
        ({"vars": {}}, "'steps' array"),
        ({"steps": {"id": "x"}}, "'steps' array"),
        ({"steps": [{"id": "s", "type": "shell"}]}, "Invalid workflow"),
    ],
)
def test_parse_workflow_rejects_bad_documents(raw, message):
    with pytest.raises(WorkflowConfigError, match=message):
        parse_workflow(raw)


def test_invalid_yaml_is_config_error(tmp_path, isolated_config):
    (tmp_path / "bad.yaml").write_text("steps: [\n", encoding="utf-8")
    with pytest.raises(WorkflowConfigError):
        load_workflow(tmp_path, tmp_path / "proj", "bad.yaml", isolated_config)
