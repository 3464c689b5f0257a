"""Turns agent records into the transcript entries that get persisted."""

from __future__ import annotations

import json
from typing import Any

from switchboard.history.models import TranscriptEntry
from switchboard.protocol.records import Record, RecordKind
from switchboard.session.models import TokenUsageSnapshot

#: Tools whose successful results are not shown on replay.
HIDDEN_RESULT_TOOLS = frozenset({"Read", "TodoWrite"})


class TranscriptBuilder:
    """Stateful converter from records to ``TranscriptEntry`` objects.

    Remembers each tool call by id so its result entry can name the tool.
    """

    def __init__(self) -> None:
        self._tool_calls: dict[str, tuple[str, dict[str, Any]]] = {}

    def reset(self) -> None:
        self._tool_calls.clear()

    def entries_for(
        self, record: Record, usage: TokenUsageSnapshot | None = None
    ) -> list[TranscriptEntry]:
        """Return the entries *record* contributes, in display order.

        Args:
            record: The record just dispatched.
            usage: Telemetry after the record was applied, used for the
                running totals of ``updateTokens`` entries.
        """
        match record.kind:
            case RecordKind.SYSTEM:
                return self._system(record)
            case RecordKind.ASSISTANT:
                return self._assistant(record, usage)
            case RecordKind.USER:
                return self._user(record)
            case RecordKind.RESULT:
                return self._result(record)
        return []

    def _system(self, record: Record) -> list[TranscriptEntry]:
        payload = record.payload
        match record.subtype:
            case "init" if record.session_id:
                data = {
                    "sessionId": record.session_id,
                    "tools": payload.get("tools") or [],
                    "mcpServers": payload.get("mcp_servers") or [],
                }
                return [TranscriptEntry(type="sessionInfo", data=data)]
            case "status":
                data = {"isCompacting": payload.get("status") == "compacting"}
                return [TranscriptEntry(type="compacting", data=data)]
            case "compact_boundary":
                meta = payload.get("compact_metadata")
                meta = meta if isinstance(meta, dict) else {}
                data = {"trigger": meta.get("trigger"), "preTokens": meta.get("pre_tokens")}
                return [TranscriptEntry(type="compactBoundary", data=data)]
        return []

    def _assistant(
        self, record: Record, usage: TokenUsageSnapshot | None
    ) -> list[TranscriptEntry]:
        entries: list[TranscriptEntry] = []
        for block in record.content_blocks:
            block_type = block.get("type")
            if block_type == "text":
                text = _text(block.get("text"))
                if text:
                    entries.append(TranscriptEntry(type="output", data=text))
            elif block_type == "thinking":
                text = _text(block.get("thinking"))
                if text:
                    entries.append(TranscriptEntry(type="thinking", data=text))
            elif block_type == "tool_use":
                entries.append(self._tool_use(block))

        # Usage goes after the content so replay attributes it to this message.
        raw_usage = record.message.get("usage")
        if isinstance(raw_usage, dict) and usage is not None:
            current = usage.current
            entries.append(
                TranscriptEntry(
                    type="updateTokens",
                    data={
                        "totalTokensInput": usage.cumulative.input,
                        "totalTokensOutput": usage.cumulative.output,
                        "currentInputTokens": current.input,
                        "currentOutputTokens": current.output,
                        "cacheCreationTokens": current.cache_creation,
                        "cacheReadTokens": current.cache_read,
                    },
                )
            )
        return entries

    def _tool_use(self, block: dict[str, Any]) -> TranscriptEntry:
        tool_name = _text(block.get("name")) or "Unknown Tool"
        raw_input = block.get("input")
        raw_input = raw_input if isinstance(raw_input, dict) else {}
        tool_use_id = block.get("id") if isinstance(block.get("id"), str) else None
        if tool_use_id:
            self._tool_calls[tool_use_id] = (tool_name, raw_input)
        return TranscriptEntry(
            type="toolUse",
            data={
                "toolInfo": f"Executing: {tool_name}",
                "toolName": tool_name,
                "rawInput": raw_input,
                "toolUseId": tool_use_id,
            },
        )

    def _user(self, record: Record) -> list[TranscriptEntry]:
        entries: list[TranscriptEntry] = []
        for block in record.content_blocks:
            if block.get("type") != "tool_result":
                continue
            content = block.get("content") or "Tool executed successfully"
            if not isinstance(content, str):
                content = json.dumps(content, indent=2)
            is_error = bool(block.get("is_error"))
            tool_use_id = block.get("tool_use_id")
            if not isinstance(tool_use_id, str):
                tool_use_id = None
            tool_name, raw_input = self._tool_calls.get(tool_use_id or "", (None, None))
            entries.append(
                TranscriptEntry(
                    type="toolResult",
                    data={
                        "content": content,
                        "isError": is_error,
                        "toolUseId": tool_use_id,
                        "toolName": tool_name,
                        "rawInput": raw_input,
                        "hidden": tool_name in HIDDEN_RESULT_TOOLS and not is_error,
                    },
                )
            )
        return entries

    def _result(self, record: Record) -> list[TranscriptEntry]:
        payload = record.payload
        if record.subtype != "success":
            return [TranscriptEntry(type="error", data=err) for err in record.errors]
        return [
            TranscriptEntry(
                type="turnComplete",
                data={
                    "sessionId": record.session_id,
                    "totalCostUsd": payload.get("total_cost_usd"),
                    "durationMs": payload.get("duration_ms"),
                    "numTurns": payload.get("num_turns"),
                },
            )
        ]


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""
