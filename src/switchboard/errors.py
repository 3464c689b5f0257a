"""Exception hierarchy shared by the bridge components."""

from __future__ import annotations

from pathlib import Path

from switchboard.constants import INSTALL_HINT


class SwitchboardError(Exception):
    """Base class for every error raised by switchboard."""


class SpawnError(SwitchboardError):
    """The agent process could not be started."""


class ExecutableNotFoundError(SpawnError):
    """The agent executable does not exist on this machine."""

    def __init__(self, executable: str, hint: str = INSTALL_HINT) -> None:
        self.executable = executable
        self.hint = hint
        super().__init__(f"'{executable}' not found on PATH. {hint}")


class DecodeError(SwitchboardError):
    """A stdout line could not be decoded into a JSON object."""

    def __init__(self, message: str, line: str = "") -> None:
        self.line = line
        super().__init__(message)


class ProtocolError(SwitchboardError):
    """A decoded object does not fit the agent protocol."""


class PermissionLookupError(SwitchboardError):
    """A decision referenced a permission request that is not pending."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"No pending permission request with id {request_id!r}")


class PersistenceError(SwitchboardError):
    """Reading or writing persisted state failed."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message)
