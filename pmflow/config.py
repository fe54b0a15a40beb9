from __future__ import annotations

import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


class AgentConfig(BaseModel):
    """How the external coding agent is launched."""

    command: str = "codex"
    args: List[str] = Field(default_factory=lambda: ["exec", "--yolo"])


class JournalConfig(BaseModel):
    """Journal durability settings."""

    fsync: bool = True


class PmConfig(BaseModel):
    """Top-level configuration model."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    projects_dir: str = "projects"
    workflow_filename: str = "pm.workflow.yaml"
    global_workflow: str = "~/.config/pm/workflows/default.yaml"


def load_config(path: Optional[str] = None) -> PmConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PM_CONFIG env
            variable or 'pm.config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PM_CONFIG", "pm.config.yaml")
    if os.path.exists(config_path):
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        config = PmConfig(**data)
    else:
        config = PmConfig()

    env_agent = os.getenv("PM_AGENT_COMMAND")
    if env_agent:
        config.agent.command = env_agent
    env_projects = os.getenv("PM_PROJECTS_DIR")
    if env_projects:
        config.projects_dir = env_projects
    return config
