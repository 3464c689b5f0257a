"""Integration tests for the bridge facade with a mocked agent process."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from switchboard.bridge import SESSION_EXPIRED_MESSAGE, Bridge
from switchboard.config.models import ProcessConfig, StorageConfig, SwitchboardConfig
from switchboard.errors import ExecutableNotFoundError
from switchboard.history.models import TranscriptEntry
from switchboard.session.models import (
    ConversationLoadedEvent,
    PermissionRequestedEvent,
    PermissionStatus,
    ProcessErrorEvent,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


class MockAsyncStdout:
    """Async-aware mock stdout fed one record at a time."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()

    def feed_record(self, record: dict[str, Any]) -> None:
        self._queue.put_nowait(json.dumps(record).encode() + b"\n")

    def close(self) -> None:
        self._queue.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._queue.get()


def _make_mock_process(stdout: MockAsyncStdout) -> MagicMock:
    proc = MagicMock()
    proc.returncode = None
    proc.pid = 4242
    proc.stdin = MagicMock()
    proc.stdin.write = MagicMock()
    proc.stdin.drain = AsyncMock()
    proc.stdin.close = MagicMock()
    proc.stdout = stdout
    proc.stderr = MagicMock()
    proc.stderr.read = AsyncMock(return_value=b"")
    proc.wait = AsyncMock(return_value=0)
    proc.terminate = MagicMock()
    proc.kill = MagicMock()
    return proc


def _make_bridge(tmp_path: Path, **agent: Any) -> Bridge:
    config = SwitchboardConfig.model_validate(
        {
            "agent": agent,
            "storage": StorageConfig(data_dir=str(tmp_path / "data")).model_dump(),
            "process": ProcessConfig(
                stop_grace_seconds=0.05, kill_grace_seconds=0.05
            ).model_dump(),
        }
    )
    return Bridge(config)


async def _collect_until(bridge: Bridge, event_type: str, timeout: float = 1.0) -> list[Any]:
    """Read channel events up to and including the first *event_type*."""
    events: list[Any] = []
    while True:
        event = await asyncio.wait_for(bridge.channel.get(), timeout=timeout)
        assert event is not None
        events.append(event)
        if event.type == event_type:
            return events


def _written(proc: MagicMock) -> list[dict[str, Any]]:
    return [json.loads(call.args[0]) for call in proc.stdin.write.call_args_list]


_INIT = {"type": "system", "subtype": "init", "session_id": "s1", "tools": []}
_REPLY = {
    "type": "assistant",
    "message": {
        "content": [{"type": "text", "text": "Hello!"}],
        "usage": {"input_tokens": 12, "output_tokens": 3},
    },
}
_RESULT = {
    "type": "result",
    "subtype": "success",
    "session_id": "s1",
    "total_cost_usd": 0.02,
    "duration_ms": 800,
    "num_turns": 1,
}


# ------------------------------------------------------------------ #
# Turns
# ------------------------------------------------------------------ #


class TestTurn:
    async def test_full_turn(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        stdout = MockAsyncStdout()
        proc = _make_mock_process(stdout)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            assert await bridge.send_message("hi") is True
            for record in (_INIT, _REPLY, _RESULT):
                stdout.feed_record(record)
            stdout.close()
            events = await _collect_until(bridge, "process_ended")

        types = [e.type for e in events]
        assert types == [
            "session_started",
            "record_forwarded",
            "usage_updated",
            "record_forwarded",
            "cost_updated",
            "record_forwarded",
            "turn_completed",
            "process_ended",
        ]
        assert bridge.session_id == "s1"
        assert bridge.telemetry.cost.session_usd == pytest.approx(0.02)
        proc.stdin.close.assert_called_once()
        (sent,) = _written(proc)
        assert sent["type"] == "user"
        assert sent["message"]["content"][0]["text"] == "hi"

        (entry,) = bridge.store.list_index()
        assert entry.session_id == "s1"
        assert entry.first_user_message == "hi"
        kinds = [e.type for e in bridge.store.transcript]
        assert kinds[:3] == ["userInput", "loading", "setProcessing"]
        assert "output" in kinds
        assert kinds[-2:] == ["turnComplete", "setProcessing"]
        telemetry = json.loads((tmp_path / "data" / "telemetry.json").read_text())
        assert telemetry["allTimeCostUsd"] == pytest.approx(0.02)
        await bridge.aclose()

    async def test_second_turn_resumes_session(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        first_out, second_out = MockAsyncStdout(), MockAsyncStdout()
        procs = [_make_mock_process(first_out), _make_mock_process(second_out)]
        with patch("asyncio.create_subprocess_exec", side_effect=procs) as mock_exec:
            await bridge.send_message("one")
            first_out.feed_record(_INIT)
            first_out.feed_record(_RESULT)
            first_out.close()
            await _collect_until(bridge, "process_ended")

            await bridge.send_message("two")
            second_out.feed_record({**_RESULT, "total_cost_usd": 0.01})
            second_out.close()
            await _collect_until(bridge, "process_ended")

        second_argv = mock_exec.call_args_list[1].args
        assert second_argv[-2:] == ("--resume", "s1")
        # Each process reports its own cost; the session sums them.
        assert bridge.telemetry.cost.session_usd == pytest.approx(0.03)
        await bridge.aclose()

    async def test_missing_executable(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path, executable="no-such-agent")
        with (
            patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError()),
            pytest.raises(ExecutableNotFoundError),
        ):
            await bridge.send_message("hi")

        (event,) = bridge.channel.drain()
        assert isinstance(event, ProcessErrorEvent)
        assert event.missing_executable is True
        assert "no-such-agent" in event.message
        kinds = [e.type for e in bridge.store.transcript]
        assert kinds[-2:] == ["error", "setProcessing"]
        await bridge.aclose()

    async def test_expired_session(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        bridge.resume_session("stale")
        bridge.channel.drain()
        stdout = MockAsyncStdout()
        with patch("asyncio.create_subprocess_exec", return_value=_make_mock_process(stdout)):
            await bridge.send_message("hi")
            stdout.feed_record(
                {
                    "type": "result",
                    "subtype": "error_during_execution",
                    "session_id": "stale",
                    "errors": ["No conversation found with session ID stale"],
                }
            )
            stdout.close()
            events = await _collect_until(bridge, "process_ended")

        assert bridge.session_id is None
        errors = [e for e in events if isinstance(e, ProcessErrorEvent)]
        assert [e.message for e in errors] == [SESSION_EXPIRED_MESSAGE]
        turn = next(e for e in events if e.type == "turn_completed")
        assert turn.is_error is True
        await bridge.aclose()


# ------------------------------------------------------------------ #
# Permissions
# ------------------------------------------------------------------ #


class TestPermissions:
    async def test_request_and_approve(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        stdout = MockAsyncStdout()
        proc = _make_mock_process(stdout)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await bridge.send_message("install it")
            stdout.feed_record(
                {
                    "type": "control_request",
                    "request_id": "r1",
                    "request": {
                        "subtype": "can_use_tool",
                        "tool_name": "Bash",
                        "input": {"command": "npm install left-pad"},
                        "tool_use_id": "tu1",
                    },
                }
            )
            events = await _collect_until(bridge, "permission_requested")
            request = events[-1]
            assert isinstance(request, PermissionRequestedEvent)
            assert request.pattern == "npm install *"

            assert bridge.decide_permission("r1", True, always_allow=True) is True
            stdout.feed_record(_RESULT)
            stdout.close()
            await _collect_until(bridge, "process_ended")

        response = _written(proc)[1]
        assert response["type"] == "control_response"
        assert response["response"]["request_id"] == "r1"
        assert response["response"]["response"]["behavior"] == "allow"
        assert bridge.rules.list_permissions() == {"Bash": ["npm install *"]}
        await bridge.aclose()

    async def test_pending_requests_cancelled_when_process_ends(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        stdout = MockAsyncStdout()
        with patch("asyncio.create_subprocess_exec", return_value=_make_mock_process(stdout)):
            await bridge.send_message("go")
            stdout.feed_record(
                {
                    "type": "control_request",
                    "request_id": "r1",
                    "request": {"subtype": "can_use_tool", "tool_name": "Write", "input": {}},
                }
            )
            await _collect_until(bridge, "permission_requested")
            stdout.close()
            events = await _collect_until(bridge, "process_ended")

        resolved = [e for e in events if e.type == "permission_resolved"]
        assert [(e.request_id, e.status) for e in resolved] == [
            ("r1", PermissionStatus.CANCELLED)
        ]
        assert bridge.decide_permission("r1", True) is False
        await bridge.aclose()

    async def test_enable_auto_approve(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        stdout = MockAsyncStdout()
        proc = _make_mock_process(stdout)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await bridge.send_message("go")
            stdout.feed_record(
                {
                    "type": "control_request",
                    "request_id": "r1",
                    "request": {"subtype": "can_use_tool", "tool_name": "Write", "input": {}},
                }
            )
            await _collect_until(bridge, "permission_requested")
            assert bridge.enable_auto_approve() == 1
            assert bridge.auto_approve is True
            assert bridge.default_options().auto_approve is True
            await bridge.stop()

        assert _written(proc)[1]["response"]["response"]["behavior"] == "allow"
        await bridge.aclose()

    async def test_auto_approve_covers_requests_in_running_turn(
        self, tmp_path: Path
    ) -> None:
        bridge = _make_bridge(tmp_path)
        stdout = MockAsyncStdout()
        proc = _make_mock_process(stdout)
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await bridge.send_message("go")
            assert bridge.enable_auto_approve() == 0
            stdout.feed_record(
                {
                    "type": "control_request",
                    "request_id": "r2",
                    "request": {
                        "subtype": "can_use_tool",
                        "tool_name": "Bash",
                        "input": {"command": "make build"},
                        "tool_use_id": "tu2",
                    },
                }
            )
            events = await _collect_until(bridge, "permission_resolved")
            assert "permission_requested" not in [e.type for e in events]
            assert events[-1].status is PermissionStatus.APPROVED
            assert events[-1].automatic is True
            assert bridge.negotiator.pending == {}
            await bridge.stop()

        written = _written(proc)
        assert [p["type"] for p in written] == ["user", "control_response"]
        assert written[1]["response"]["request_id"] == "r2"
        assert written[1]["response"]["response"]["behavior"] == "allow"
        await bridge.aclose()

    async def test_auto_approve_config_trusts_requests(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path, auto_approve=True)
        assert bridge.negotiator.trust_all is True
        await bridge.aclose()


# ------------------------------------------------------------------ #
# Conversations
# ------------------------------------------------------------------ #


class TestConversations:
    def _saved(self, tmp_path: Path) -> str:
        bridge = _make_bridge(tmp_path)
        bridge.store.append(TranscriptEntry(type="userInput", data="remember me"))
        bridge.store.append(TranscriptEntry(type="output", data="noted"))
        entry = bridge.store.save("s-old", total_cost=0.4)
        assert entry is not None
        return entry.filename

    async def test_load_conversation(self, tmp_path: Path) -> None:
        handle = self._saved(tmp_path)
        bridge = _make_bridge(tmp_path)
        conversation = bridge.load_conversation(handle)
        assert conversation is not None
        assert bridge.session_id == "s-old"
        assert bridge.telemetry.cost.session_usd == pytest.approx(0.4)

        (event,) = bridge.channel.drain()
        assert isinstance(event, ConversationLoadedEvent)
        assert event.found is True
        assert [(m.type, m.content) for m in event.messages] == [
            ("user", "remember me"),
            ("assistant", "noted"),
        ]
        await bridge.aclose()

    async def test_load_missing_conversation(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        assert bridge.load_conversation("conversation-missing.json") is None
        (event,) = bridge.channel.drain()
        assert event.found is False
        assert bridge.session_id is None
        await bridge.aclose()

    async def test_list_and_delete(self, tmp_path: Path) -> None:
        handle = self._saved(tmp_path)
        bridge = _make_bridge(tmp_path)
        (entry,) = bridge.list_conversations()
        assert entry.filename == handle
        assert bridge.delete_conversation(handle) is True
        events = bridge.channel.drain()
        assert [e.type for e in events] == ["conversation_list", "conversation_list"]
        assert events[-1].entries == []
        assert bridge.delete_conversation(handle) is False
        await bridge.aclose()

    async def test_new_session_resets_state(self, tmp_path: Path) -> None:
        bridge = _make_bridge(tmp_path)
        bridge.resume_session("s1")
        bridge.store.append(TranscriptEntry(type="userInput", data="hi"))
        bridge.telemetry.record_cost(0.5)
        bridge.channel.drain()

        await bridge.new_session()
        assert bridge.session_id is None
        assert bridge.store.transcript == []
        assert bridge.telemetry.cost.session_usd == 0.0
        assert bridge.telemetry.cost.all_time_usd == pytest.approx(0.5)
        assert [e.type for e in bridge.channel.drain()] == ["usage_updated", "cost_updated"]
        assert len(bridge.store.list_index()) == 1
        await bridge.aclose()
