"""Configuration models and parser for switchboard.yaml."""

from switchboard.config.models import (
    AgentConfig,
    LauncherConfig,
    LoggingConfig,
    ProcessConfig,
    StorageConfig,
    SwitchboardConfig,
)
from switchboard.config.parser import ConfigError, load_config

__all__ = [
    "AgentConfig",
    "ConfigError",
    "LauncherConfig",
    "LoggingConfig",
    "ProcessConfig",
    "StorageConfig",
    "SwitchboardConfig",
    "load_config",
]
