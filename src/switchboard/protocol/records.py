"""Inbound records and outbound wire messages for the stream-json protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from switchboard.constants import DENY_MESSAGE
from switchboard.errors import ProtocolError

#: Error text the agent returns when asked to resume an unknown session.
SESSION_NOT_FOUND = "No conversation found with session ID"


class RecordKind(StrEnum):
    """Top-level ``type`` values the agent writes to stdout."""

    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    RESULT = "result"
    CONTROL_REQUEST = "control_request"
    CONTROL_RESPONSE = "control_response"


@dataclass(frozen=True)
class Record:
    """One decoded stdout object, classified by its ``type`` field."""

    kind: RecordKind
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> Record:
        """Classify a decoded object.

        Raises:
            ProtocolError: If ``type`` is missing or unknown.
        """
        raw_type = obj.get("type")
        try:
            kind = RecordKind(raw_type)
        except ValueError as exc:
            msg = f"Unknown record type {raw_type!r}"
            raise ProtocolError(msg) from exc
        return cls(kind=kind, payload=obj)

    @property
    def subtype(self) -> str | None:
        value = self.payload.get("subtype")
        return value if isinstance(value, str) else None

    @property
    def session_id(self) -> str | None:
        value = self.payload.get("session_id")
        return value if isinstance(value, str) and value else None

    @property
    def message(self) -> dict[str, Any]:
        """The nested ``message`` object of assistant and user records."""
        value = self.payload.get("message")
        return value if isinstance(value, dict) else {}

    @property
    def content_blocks(self) -> list[dict[str, Any]]:
        content = self.message.get("content")
        if not isinstance(content, list):
            return []
        return [block for block in content if isinstance(block, dict)]

    @property
    def errors(self) -> list[str]:
        """Error strings carried by a failed ``result`` record."""
        errors = self.payload.get("errors")
        if isinstance(errors, list):
            return [str(err) for err in errors]
        result = self.payload.get("result")
        return [result] if isinstance(result, str) and result else []

    @property
    def session_not_found(self) -> bool:
        """True when the agent refused to resume an unknown session."""
        return any(SESSION_NOT_FOUND in err for err in self.errors)


# ------------------------------------------------------------------ #
# Outbound messages
# ------------------------------------------------------------------ #


def user_message(text: str, session_id: str | None) -> dict[str, Any]:
    """Build the stdin message carrying one user turn."""
    return {
        "type": "user",
        "session_id": session_id or "",
        "message": {
            "role": "user",
            "content": [{"type": "text", "text": text}],
        },
        "parent_tool_use_id": None,
    }


def permission_allow(
    request_id: str,
    tool_use_id: str | None,
    tool_input: dict[str, Any],
    updated_permissions: list[Any] | None = None,
) -> dict[str, Any]:
    """Build the control response that lets a tool call proceed.

    ``updatedPermissions`` is only present when the user chose to
    remember the decision.
    """
    decision: dict[str, Any] = {"behavior": "allow", "updatedInput": tool_input}
    if updated_permissions is not None:
        decision["updatedPermissions"] = updated_permissions
    decision["toolUseID"] = tool_use_id
    return _control_success(request_id, decision)


def permission_deny(
    request_id: str,
    tool_use_id: str | None,
    message: str = DENY_MESSAGE,
) -> dict[str, Any]:
    """Build the control response that rejects a tool call and interrupts the turn."""
    decision = {
        "behavior": "deny",
        "message": message,
        "interrupt": True,
        "toolUseID": tool_use_id,
    }
    return _control_success(request_id, decision)


def _control_success(request_id: str, decision: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "control_response",
        "response": {
            "subtype": "success",
            "request_id": request_id,
            "response": decision,
        },
    }


def encode(payload: dict[str, Any]) -> bytes:
    """Serialize *payload* as one newline-terminated line."""
    return (json.dumps(payload) + "\n").encode("utf-8")
