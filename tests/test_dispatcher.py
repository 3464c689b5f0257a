"""Tests for record routing in the protocol dispatcher."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from switchboard.agent.dispatcher import ProtocolDispatcher
from switchboard.agent.permissions import PermissionNegotiator
from switchboard.agent.telemetry import TelemetryAccumulator
from switchboard.protocol.records import Record
from switchboard.session.channel import EventChannel
from switchboard.session.models import (
    AccountInfoEvent,
    CostUpdatedEvent,
    PermissionRequestedEvent,
    RecordForwardedEvent,
    TokenCounts,
    TurnCompletedEvent,
    UsageUpdatedEvent,
)


class _Harness:
    def __init__(self) -> None:
        self.channel = EventChannel()
        self.sent: list[dict[str, Any]] = []
        self.negotiator = PermissionNegotiator(self._write, self.channel)
        self.telemetry = TelemetryAccumulator()
        self.close_input = MagicMock()
        self.on_session_id = MagicMock()
        self.on_session_lost = MagicMock()
        self.dispatcher = ProtocolDispatcher(
            self.negotiator,
            self.telemetry,
            self.channel,
            close_input=self.close_input,
            on_session_id=self.on_session_id,
            on_session_lost=self.on_session_lost,
        )

    def _write(self, payload: dict[str, Any]) -> bool:
        self.sent.append(payload)
        return True

    def feed(self, payload: dict[str, Any]) -> list[Any]:
        self.dispatcher.dispatch(Record.from_json(payload))
        return self.channel.drain()


@pytest.fixture
def harness() -> _Harness:
    return _Harness()


def _result(cost: float | None = None, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": "result", "subtype": "success", "session_id": "s1"}
    if cost is not None:
        payload["total_cost_usd"] = cost
    payload.update(extra)
    return payload


class TestControlRequests:
    def test_can_use_tool_registers_permission(self, harness: _Harness) -> None:
        events = harness.feed(
            {
                "type": "control_request",
                "request_id": "r1",
                "request": {
                    "subtype": "can_use_tool",
                    "tool_name": "Bash",
                    "input": {"command": "git push origin main"},
                    "tool_use_id": "tu1",
                    "permission_suggestions": [{"type": "addRules"}],
                    "blocked_path": "/etc",
                },
            }
        )
        (event,) = events
        assert isinstance(event, PermissionRequestedEvent)
        assert event.pattern == "git push *"
        assert event.blocked_path == "/etc"
        assert harness.negotiator.pending["r1"].suggestions == [{"type": "addRules"}]

    def test_missing_fields_use_defaults(self, harness: _Harness) -> None:
        (event,) = harness.feed(
            {"type": "control_request", "request_id": "r2", "request": {"subtype": "can_use_tool"}}
        )
        assert event.tool_name == "Unknown Tool"
        assert event.tool_use_id == "r2"
        assert event.input == {}

    def test_other_subtypes_ignored(self, harness: _Harness) -> None:
        events = harness.feed(
            {"type": "control_request", "request_id": "r3", "request": {"subtype": "hook"}}
        )
        assert events == []
        assert harness.negotiator.pending == {}

    def test_malformed_request_ignored(self, harness: _Harness) -> None:
        assert harness.feed({"type": "control_request", "request": "nope"}) == []


class TestControlResponses:
    def test_account_info(self, harness: _Harness) -> None:
        (event,) = harness.feed(
            {
                "type": "control_response",
                "response": {
                    "response": {"account": {"subscriptionType": "pro", "email": "a@b.c"}}
                },
            }
        )
        assert isinstance(event, AccountInfoEvent)
        assert event.subscription_type == "pro"
        assert event.email == "a@b.c"

    def test_without_account_emits_nothing(self, harness: _Harness) -> None:
        assert harness.feed({"type": "control_response", "response": {}}) == []


class TestResult:
    def test_closes_input_and_reports_session(self, harness: _Harness) -> None:
        harness.feed(_result())
        harness.close_input.assert_called_once_with()
        harness.on_session_id.assert_called_once_with("s1")

    def test_event_order(self, harness: _Harness) -> None:
        events = harness.feed(_result(0.5, duration_ms=1200, num_turns=2))
        assert [e.type for e in events] == ["cost_updated", "record_forwarded", "turn_completed"]
        cost, _, turn = events
        assert isinstance(cost, CostUpdatedEvent)
        assert cost.session_usd == pytest.approx(0.5)
        assert isinstance(turn, TurnCompletedEvent)
        assert turn.duration_ms == 1200
        assert turn.num_turns == 2
        assert turn.is_error is False

    def test_without_cost_skips_cost_event(self, harness: _Harness) -> None:
        events = harness.feed(_result())
        assert [e.type for e in events] == ["record_forwarded", "turn_completed"]

    def test_error_subtype_marks_turn_failed(self, harness: _Harness) -> None:
        events = harness.feed({"type": "result", "subtype": "error_max_turns", "session_id": "s1"})
        assert events[-1].is_error is True

    def test_session_not_found_clears_session(self, harness: _Harness) -> None:
        harness.feed(
            {
                "type": "result",
                "subtype": "error_during_execution",
                "session_id": "stale",
                "errors": ["No conversation found with session ID stale"],
            }
        )
        harness.on_session_lost.assert_called_once_with()
        harness.on_session_id.assert_not_called()

    def test_cost_baseline_per_process(self, harness: _Harness) -> None:
        harness.dispatcher.begin_process()
        harness.feed(_result(1.0))
        harness.feed(_result(2.0))
        # A fresh process restarts its cost report from zero.
        harness.dispatcher.begin_process()
        (cost, *_) = harness.feed(_result(0.5))
        assert cost.session_usd == pytest.approx(2.5)
        assert cost.all_time_usd == pytest.approx(2.5)


class TestAssistantAndSystem:
    def test_usage_reported_before_forward(self, harness: _Harness) -> None:
        events = harness.feed(
            {
                "type": "assistant",
                "message": {
                    "content": [{"type": "text", "text": "hi"}],
                    "usage": {"input_tokens": 10, "output_tokens": 3},
                },
            }
        )
        assert [e.type for e in events] == ["usage_updated", "record_forwarded"]
        assert isinstance(events[0], UsageUpdatedEvent)
        assert events[0].snapshot.cumulative == TokenCounts(input=10, output=3)

    def test_assistant_without_usage(self, harness: _Harness) -> None:
        events = harness.feed({"type": "assistant", "message": {"content": []}})
        assert [e.type for e in events] == ["record_forwarded"]

    def test_init_reports_session(self, harness: _Harness) -> None:
        events = harness.feed({"type": "system", "subtype": "init", "session_id": "s9"})
        harness.on_session_id.assert_called_once_with("s9")
        assert isinstance(events[0], RecordForwardedEvent)
        assert events[0].kind == "system"

    def test_compact_boundary_resets_tokens(self, harness: _Harness) -> None:
        harness.telemetry.record_usage({"input_tokens": 50})
        harness.telemetry.record_cost(0.3)
        events = harness.feed({"type": "system", "subtype": "compact_boundary"})
        assert events[0].snapshot.cumulative == TokenCounts()
        assert harness.telemetry.cost.session_usd == pytest.approx(0.3)

    def test_user_forwarded(self, harness: _Harness) -> None:
        (event,) = harness.feed({"type": "user", "message": {"content": []}})
        assert event.kind == "user"
