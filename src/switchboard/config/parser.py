"""Load and validate switchboard.yaml configuration."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from switchboard.config.models import SwitchboardConfig

DEFAULT_CONFIG_NAME = "switchboard.yaml"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> SwitchboardConfig:
    """Load and validate a switchboard.yaml file.

    Args:
        path: Explicit config file path. If None, looks for
              switchboard.yaml in the current directory and falls back
              to the defaults when there is none.

    Returns:
        A validated SwitchboardConfig instance.

    Raises:
        ConfigError: On a missing explicit file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        _load_env(Path.cwd())
        return SwitchboardConfig()
    raw = _read_yaml(config_path)
    _load_env(config_path.parent)
    return _validate(raw)


def _resolve_path(path: Path | None) -> Path | None:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _validate(raw: dict[str, Any]) -> SwitchboardConfig:
    try:
        return SwitchboardConfig.model_validate(raw)
    except ValidationError as exc:
        parts: list[str] = []
        for err in exc.errors():
            loc = " → ".join(str(s) for s in err["loc"]) or "(top level)"
            parts.append(f"  {loc}: {_describe(err)}")
        joined = "\n".join(parts)
        msg = f"Config validation failed:\n{joined}"
        raise ConfigError(msg) from exc


def _describe(err: Mapping[str, Any]) -> str:
    """Rewrite one pydantic error in terms of switchboard.yaml settings."""
    match err["type"]:
        case "missing":
            return "This field is required"
        case "extra_forbidden":
            known = _known_settings(err["loc"][:-1])
            if not known:
                return "Unknown setting"
            return f"Unknown setting (expected one of: {', '.join(known)})"
        case "value_error":
            # Cross-field checks such as plan_mode with auto_approve.
            return err["msg"].removeprefix("Value error, ")
        case _:
            return err["msg"]


def _known_settings(section: tuple[int | str, ...]) -> list[str]:
    model: type[BaseModel] = SwitchboardConfig
    for part in section:
        field = model.model_fields.get(str(part))
        if field is None:
            return []
        annotation = field.annotation
        if not (isinstance(annotation, type) and issubclass(annotation, BaseModel)):
            return []
        model = annotation
    return sorted(model.model_fields)
