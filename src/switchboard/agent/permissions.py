"""Tool-permission negotiation with the agent and the always-allow rule store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from switchboard.constants import SHELL_TOOL
from switchboard.errors import PermissionLookupError, PersistenceError
from switchboard.protocol.records import permission_allow, permission_deny
from switchboard.session.channel import EventChannel
from switchboard.session.models import (
    PermissionRequestedEvent,
    PermissionResolvedEvent,
    PermissionStatus,
)
from switchboard.storage import read_json, write_json

logger = logging.getLogger(__name__)

#: Writes one control response to the agent; False when nothing is listening.
ResponseWriter = Callable[[dict[str, Any]], bool]

#: (command, subcommand) pairs remembered as ``"<command> <subcommand> *"``.
#: An empty subcommand remembers every invocation of the command.
_COMMAND_FAMILIES: dict[str, tuple[str, ...]] = {
    "npm": ("install", "i", "add", "remove", "uninstall", "update", "run"),
    "yarn": ("add", "remove", "install"),
    "pnpm": ("install", "add", "remove"),
    "git": (
        "add", "commit", "push", "pull", "checkout", "branch", "merge",
        "clone", "reset", "rebase", "tag",
    ),
    "docker": (
        "run", "build", "exec", "logs", "stop", "start", "rm", "rmi", "pull", "push",
    ),
    "make": ("",),
    "cargo": ("build", "run", "test", "install"),
    "mvn": ("compile", "test", "package"),
    "gradle": ("build", "test"),
    "curl": ("",),
    "wget": ("",),
    "ssh": ("",),
    "scp": ("",),
    "rsync": ("",),
    "tar": ("",),
    "zip": ("",),
    "unzip": ("",),
    "node": ("",),
    "python": ("",),
    "python3": ("",),
    "pip": ("install",),
    "pip3": ("install",),
    "composer": ("install", "require"),
    "bundle": ("install",),
    "gem": ("install",),
}


def command_pattern(command: str) -> str:
    """Return the rule remembered when *command* is always allowed.

    ``"npm install left-pad"`` becomes ``"npm install *"``; a command with
    no known family is remembered verbatim.
    """
    words = command.strip().split()
    if not words:
        return command
    subcommands = _COMMAND_FAMILIES.get(words[0])
    if subcommands is None:
        return command
    if "" in subcommands:
        return f"{words[0]} *"
    if len(words) > 1 and words[1] in subcommands:
        return f"{words[0]} {words[1]} *"
    return command


def matches_pattern(command: str, pattern: str) -> bool:
    """Check *command* against a stored rule.

    A rule ending in ``" *"`` matches any command that starts with the
    rule minus the ``*``; any other rule must match exactly.
    """
    if pattern == command:
        return True
    if pattern.endswith(" *"):
        return command.startswith(pattern[:-1])
    return False


def _shell_command(tool_input: dict[str, Any]) -> str | None:
    command = tool_input.get("command")
    return command if isinstance(command, str) else None


# ------------------------------------------------------------------ #
# Rule store
# ------------------------------------------------------------------ #


class PermissionRuleStore:
    """Persists always-allow rules as ``{"alwaysAllow": {tool: true | [patterns]}}``."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, bool | list[str]]:
        """Read the rule table; unreadable files count as empty."""
        try:
            data = read_json(self._path)
        except PersistenceError as exc:
            logger.error("Ignoring unreadable permission rules: %s", exc)
            return {}
        if not isinstance(data, dict):
            return {}
        rules = data.get("alwaysAllow")
        if not isinstance(rules, dict):
            return {}
        cleaned: dict[str, bool | list[str]] = {}
        for tool, rule in rules.items():
            if rule is True:
                cleaned[tool] = True
            elif isinstance(rule, list):
                cleaned[tool] = [p for p in rule if isinstance(p, str)]
        return cleaned

    def is_pre_approved(self, tool_name: str, tool_input: dict[str, Any]) -> bool:
        rule = self.load().get(tool_name)
        if rule is True:
            return True
        if isinstance(rule, list) and tool_name == SHELL_TOOL:
            command = _shell_command(tool_input)
            if command is None:
                return False
            return any(matches_pattern(command.strip(), p) for p in rule)
        return False

    def save_permission(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        """Remember an always-allow decision for this tool call."""
        command = _shell_command(tool_input) if tool_name == SHELL_TOOL else None
        if command is not None:
            self.add_permission(tool_name, command_pattern(command.strip()))
        else:
            self.add_permission(tool_name, None)

    def add_permission(self, tool_name: str, command: str | None) -> None:
        """Allow *tool_name* outright, or only for *command* when given."""
        rules = self.load()
        if command is None:
            rules[tool_name] = True
        else:
            existing = rules.get(tool_name)
            if existing is True:
                return
            patterns = list(existing) if isinstance(existing, list) else []
            if command not in patterns:
                patterns.append(command)
            rules[tool_name] = patterns
        self._write(rules)

    def remove_permission(self, tool_name: str, command: str | None) -> bool:
        """Drop a whole tool rule, or one pattern of it. Returns True if anything changed."""
        rules = self.load()
        existing = rules.get(tool_name)
        if existing is None:
            return False
        if command is None:
            del rules[tool_name]
        else:
            if not isinstance(existing, list) or command not in existing:
                return False
            remaining = [p for p in existing if p != command]
            if remaining:
                rules[tool_name] = remaining
            else:
                del rules[tool_name]
        self._write(rules)
        return True

    def list_permissions(self) -> dict[str, bool | list[str]]:
        return self.load()

    def _write(self, rules: dict[str, bool | list[str]]) -> None:
        try:
            write_json(self._path, {"alwaysAllow": rules})
        except PersistenceError as exc:
            logger.error("Failed to save permission rules: %s", exc)


# ------------------------------------------------------------------ #
# Negotiator
# ------------------------------------------------------------------ #


@dataclass
class PendingPermissionRequest:
    """A ``can_use_tool`` request waiting for the user's decision."""

    request_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    suggestions: list[Any] | None = None
    tool_use_id: str | None = None
    pattern: str | None = None
    decision_reason: str | None = None
    blocked_path: str | None = None


class PermissionNegotiator:
    """Tracks pending permission requests and answers them on the agent's stdin.

    Every request ends in exactly one of approved, denied, or cancelled.
    Decisions for ids that are not pending change nothing.
    """

    def __init__(
        self,
        writer: ResponseWriter,
        channel: EventChannel,
        rules: PermissionRuleStore | None = None,
        *,
        trust_all: bool = False,
    ) -> None:
        self._writer = writer
        self._channel = channel
        self._rules = rules
        self._trust_all = trust_all
        self._pending: dict[str, PendingPermissionRequest] = {}

    @property
    def trust_all(self) -> bool:
        """Whether every incoming request is approved without asking."""
        return self._trust_all

    @property
    def pending(self) -> dict[str, PendingPermissionRequest]:
        """A copy of the pending table keyed by request id."""
        return dict(self._pending)

    def request_permission(
        self,
        request_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        suggestions: list[Any] | None = None,
        tool_use_id: str | None = None,
        *,
        decision_reason: str | None = None,
        blocked_path: str | None = None,
    ) -> PermissionStatus:
        """Register a request, or approve it at once when trusted or a stored rule allows it."""
        tool_input = tool_input or {}
        if self._trust_all:
            reason = "trust-all mode"
        elif self._rules is not None and self._rules.is_pre_approved(tool_name, tool_input):
            reason = "stored rule"
        else:
            reason = None

        if reason is not None:
            logger.info("Auto-approving %s (%s) from %s", tool_name, request_id, reason)
            self._respond(permission_allow(request_id, tool_use_id, tool_input))
            self._channel.publish(
                PermissionResolvedEvent(
                    request_id=request_id,
                    status=PermissionStatus.APPROVED,
                    automatic=True,
                )
            )
            return PermissionStatus.APPROVED

        pattern = None
        if tool_name == SHELL_TOOL:
            command = _shell_command(tool_input)
            if command is not None:
                pattern = command_pattern(command.strip())

        if request_id in self._pending:
            logger.debug("Duplicate permission request %s replaces the pending one", request_id)
        request = PendingPermissionRequest(
            request_id=request_id,
            tool_name=tool_name,
            input=tool_input,
            suggestions=suggestions,
            tool_use_id=tool_use_id,
            pattern=pattern,
            decision_reason=decision_reason,
            blocked_path=blocked_path,
        )
        self._pending[request_id] = request
        self._channel.publish(
            PermissionRequestedEvent(
                request_id=request_id,
                tool_name=tool_name,
                input=tool_input,
                pattern=pattern,
                suggestions=suggestions,
                tool_use_id=tool_use_id,
                decision_reason=decision_reason,
                blocked_path=blocked_path,
            )
        )
        return PermissionStatus.PENDING

    def decide(self, request_id: str, approved: bool, always_allow: bool = False) -> bool:
        """Answer a pending request.

        Returns:
            True if the request was pending, False if the id was unknown.
        """
        request = self._pending.pop(request_id, None)
        if request is None:
            logger.warning("%s", PermissionLookupError(request_id))
            return False

        if approved:
            if always_allow and self._rules is not None:
                self._rules.save_permission(request.tool_name, request.input)
            payload = permission_allow(
                request_id,
                request.tool_use_id,
                request.input,
                updated_permissions=request.suggestions if always_allow else None,
            )
            status = PermissionStatus.APPROVED
        else:
            payload = permission_deny(request_id, request.tool_use_id)
            status = PermissionStatus.DENIED

        self._respond(payload)
        self._channel.publish(PermissionResolvedEvent(request_id=request_id, status=status))
        return True

    def auto_approve_all(self) -> int:
        """Trust every later request and approve those pending; returns how many."""
        self._trust_all = True
        request_ids = list(self._pending)
        for request_id in request_ids:
            self.decide(request_id, True, always_allow=False)
        return len(request_ids)

    def cancel_all(self) -> int:
        """Mark every pending request cancelled, e.g. when the process ends."""
        request_ids = list(self._pending)
        self._pending.clear()
        for request_id in request_ids:
            self._channel.publish(
                PermissionResolvedEvent(
                    request_id=request_id,
                    status=PermissionStatus.CANCELLED,
                )
            )
        return len(request_ids)

    def _respond(self, payload: dict[str, Any]) -> None:
        if not self._writer(payload):
            logger.warning(
                "Permission response %s was not delivered; no agent process is listening",
                payload["response"]["request_id"],
            )
