"""Pydantic v2 models for switchboard.yaml configuration."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from switchboard.constants import DEFAULT_EXECUTABLE, DEFAULT_MAX_HISTORY

#: Valid WSL-style distribution name.
_DISTRO_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")


class AgentConfig(BaseModel):
    """How the agent CLI is invoked for each turn."""

    model_config = ConfigDict(extra="forbid")

    executable: str = Field(
        default=DEFAULT_EXECUTABLE,
        description="Agent CLI executable used on the direct launch path",
    )
    cwd: str | None = Field(
        default=None,
        description="Working directory for the agent (defaults to the current one)",
    )
    model: str | None = Field(
        default=None,
        description="Model name passed through as --model",
    )
    plan_mode: bool = Field(
        default=False,
        description="Start the agent in plan permission mode",
    )
    auto_approve: bool = Field(
        default=False,
        description="Skip all permission prompts (unrestricted trust)",
    )
    mcp_config: str | None = Field(
        default=None,
        description="Path to an MCP server config file",
    )
    allowed_tools: list[str] = Field(
        default_factory=list,
        description="Tools the agent may use without asking",
    )
    disallowed_tools: list[str] = Field(
        default_factory=list,
        description="Tools the agent may never use",
    )
    append_system_prompt: str | None = Field(
        default=None,
        description="Extra text appended to the agent's system prompt",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the agent process",
    )
    strip_env: list[str] = Field(
        default_factory=list,
        description="Environment variables removed before spawning (e.g. API keys)",
    )

    @model_validator(mode="after")
    def _validate_modes(self) -> AgentConfig:
        if self.plan_mode and self.auto_approve:
            msg = "plan_mode and auto_approve are mutually exclusive"
            raise ValueError(msg)
        return self


class LauncherConfig(BaseModel):
    """Indirect launch path: run the agent through a compatibility layer."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Use the indirect launch path")
    program: str = Field(default="wsl", description="Launcher executable")
    distro: str = Field(default="Ubuntu", description="Distribution passed as -d")
    shell: str = Field(default="bash", description="Shell run inside the launcher")
    node_path: str | None = Field(
        default=None,
        description="Node.js runtime inside the launcher; omit to run cli_path directly",
    )
    cli_path: str | None = Field(
        default=None,
        description="Path of the agent CLI inside the launcher",
    )

    @model_validator(mode="after")
    def _validate_enabled(self) -> LauncherConfig:
        if not self.enabled:
            return self
        if not self.cli_path:
            msg = "launcher.cli_path is required when the launcher is enabled"
            raise ValueError(msg)
        if not _DISTRO_RE.match(self.distro):
            msg = f"Invalid distro name '{self.distro}'"
            raise ValueError(msg)
        return self


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_dir: str = Field(
        default=".switchboard",
        description="Directory for conversations, permission rules and telemetry",
    )
    max_history: int = Field(
        default=DEFAULT_MAX_HISTORY,
        ge=1,
        description="Conversations kept in the index",
    )


class ProcessConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stop_grace_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Wait after closing stdin before signalling the process group",
    )
    kill_grace_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Wait after SIGTERM before killing the process",
    )


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Root log level",
    )
    file: str | None = Field(default=None, description="Also log to this file")


class SwitchboardConfig(BaseModel):
    """Root model for switchboard.yaml."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1", description="Config schema version")
    agent: AgentConfig = Field(default_factory=AgentConfig)
    launcher: LauncherConfig = Field(default_factory=LauncherConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
