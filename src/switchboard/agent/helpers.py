"""Shared helper functions for launching and supervising the agent."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping

from switchboard.constants import FORCED_ENV

_DRIVE_PATH_RE = re.compile(r"^([A-Za-z]):[\\/](.*)$")


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


def to_launcher_path(path: str) -> str:
    """Convert a Windows drive path to the launcher's view of it.

    ``C:\\Users\\me\\mcp.json`` becomes ``/mnt/c/Users/me/mcp.json``;
    anything else is returned unchanged.
    """
    match = _DRIVE_PATH_RE.match(path)
    if match is None:
        return path
    drive, rest = match.groups()
    return f"/mnt/{drive.lower()}/{rest.replace(chr(92), '/')}"


def build_agent_env(
    extra: Mapping[str, str] | None = None,
    strip: Iterable[str] = (),
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the environment for an agent process.

    Starts from *base* (the current environment by default), removes the
    *strip* keys, applies *extra*, and finally forces colour output off.
    """
    stripped = set(strip)
    source = os.environ if base is None else base
    env = {k: v for k, v in source.items() if k not in stripped}
    if extra:
        env.update(extra)
    env.update(FORCED_ENV)
    return env
