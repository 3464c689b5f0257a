"""Rebuild display messages from a stored transcript."""

from __future__ import annotations

import json
from typing import Any

from switchboard.history.models import ReplayMessage, TranscriptEntry

#: Entry kinds that carry UI bookkeeping only.
_SILENT_KINDS = frozenset(
    {
        "loading",
        "setProcessing",
        "clearLoading",
        "sessionInfo",
        "compacting",
        "compactBoundary",
        "turnComplete",
    }
)


def build_replay(entries: list[TranscriptEntry]) -> list[ReplayMessage]:
    """Reconstruct the message list a front end would have shown.

    Consecutive ``output`` entries merge into one assistant message until
    something else (a tool call, a user turn, an error, the end of the
    turn) closes it.  Tool results update the status of the call they
    answer.  Token usage attaches to the assistant message it belongs to.
    """
    return _ReplayBuilder().build(entries)


class _ReplayBuilder:
    def __init__(self) -> None:
        self.messages: list[ReplayMessage] = []
        self._open_assistant: ReplayMessage | None = None
        self._tool_index: dict[str, ReplayMessage] = {}
        self._pending_usage: dict[str, int] | None = None

    def build(self, entries: list[TranscriptEntry]) -> list[ReplayMessage]:
        for entry in entries:
            self._apply(entry)
        return self.messages

    def _apply(self, entry: TranscriptEntry) -> None:
        data = _payload(entry)
        match entry.type:
            case "userInput":
                self._close()
                self._add("user", entry, content=_to_text(data))
            case "output":
                self._output(entry, data)
            case "updateTokens":
                self._usage(data)
            case "thinking":
                self._close()
                self._add("thinking", entry, content=_to_text(data))
            case "toolUse":
                self._close()
                self._tool_use(entry, data)
            case "toolResult":
                self._close()
                self._tool_result(entry, data)
            case "error":
                self._close()
                self._add("error", entry, content=_to_text(data), is_error=True)
            case kind if kind in _SILENT_KINDS:
                if kind == "turnComplete":
                    self._close()
            case _:
                pass

    # ------------------------------------------------------------------
    # Entry handlers
    # ------------------------------------------------------------------

    def _output(self, entry: TranscriptEntry, data: Any) -> None:
        is_final = False
        text = data
        if isinstance(data, dict):
            text = data.get("text", "")
            is_final = bool(data.get("isFinal"))

        if self._open_assistant is not None:
            self._open_assistant.content += "\n" + _to_text(text)
        else:
            message = self._add("assistant", entry, content=_to_text(text))
            if self._pending_usage is not None:
                message.usage = self._pending_usage
                self._pending_usage = None
            self._open_assistant = message
        if is_final:
            self._close()

    def _usage(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        usage = {
            "input": _as_int(data.get("currentInputTokens")),
            "output": _as_int(data.get("currentOutputTokens")),
            "cache_read": _as_int(data.get("cacheReadTokens")),
            "cache_creation": _as_int(data.get("cacheCreationTokens")),
        }
        if self._open_assistant is not None:
            self._open_assistant.usage = usage
            return
        for message in reversed(self.messages):
            if message.type == "user":
                break
            if message.type == "assistant" and message.usage is None:
                message.usage = usage
                return
        self._pending_usage = usage

    def _tool_use(self, entry: TranscriptEntry, data: Any) -> None:
        data = data if isinstance(data, dict) else {}
        raw_input = data.get("rawInput")
        message = self._add(
            "tool_use",
            entry,
            content=_to_text(data.get("toolInput", raw_input)),
            tool_use_id=_str_or_none(data.get("toolUseId")),
            tool_name=_str_or_none(data.get("toolName")),
            raw_input=raw_input if isinstance(raw_input, dict) else None,
            tool_info=_str_or_none(data.get("toolInfo")),
            status="executing",
        )
        if message.tool_use_id:
            self._tool_index[message.tool_use_id] = message

    def _tool_result(self, entry: TranscriptEntry, data: Any) -> None:
        data = data if isinstance(data, dict) else {}
        is_error = bool(data.get("isError"))
        tool_use_id = _str_or_none(data.get("toolUseId"))
        tool_message = self._tool_index.get(tool_use_id) if tool_use_id else None
        if tool_message is not None:
            tool_message.status = "failed" if is_error else "completed"
        if data.get("hidden"):
            return
        self._add(
            "tool_result",
            entry,
            content=_to_text(data.get("content")),
            tool_use_id=tool_use_id,
            tool_name=_str_or_none(data.get("toolName")),
            is_error=is_error,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _add(self, kind: str, entry: TranscriptEntry, **fields: Any) -> ReplayMessage:
        message = ReplayMessage(
            id=f"msg-{len(self.messages)}",
            type=kind,
            timestamp=entry.timestamp,
            **fields,
        )
        self.messages.append(message)
        return message

    def _close(self) -> None:
        self._open_assistant = None


def _payload(entry: TranscriptEntry) -> Any:
    """Entry payload, falling back to keys stored flat next to ``type``."""
    if entry.data is not None:
        return entry.data
    return dict(entry.model_extra or {}) or None


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)
