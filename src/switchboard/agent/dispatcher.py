"""Routes each agent record to the negotiator, the telemetry and the event channel."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from switchboard.agent.permissions import PermissionNegotiator
from switchboard.agent.telemetry import TelemetryAccumulator
from switchboard.protocol.records import Record, RecordKind
from switchboard.session.channel import EventChannel
from switchboard.session.models import (
    AccountInfoEvent,
    CostUpdatedEvent,
    RecordForwardedEvent,
    TurnCompletedEvent,
    UsageUpdatedEvent,
)

logger = logging.getLogger(__name__)


class ProtocolDispatcher:
    """Classifies records in arrival order and fans them out.

    Args:
        negotiator: Receives ``can_use_tool`` control requests.
        telemetry: Receives usage and cost reports.
        channel: Receives every outbound event.
        close_input: Called when the agent reports the end of a turn.
        on_session_id: Called with every session id the agent announces.
        on_session_lost: Called when the agent cannot resume the session.
    """

    def __init__(
        self,
        negotiator: PermissionNegotiator,
        telemetry: TelemetryAccumulator,
        channel: EventChannel,
        *,
        close_input: Callable[[], None],
        on_session_id: Callable[[str], None],
        on_session_lost: Callable[[], None] | None = None,
    ) -> None:
        self._negotiator = negotiator
        self._telemetry = telemetry
        self._channel = channel
        self._close_input = close_input
        self._on_session_id = on_session_id
        self._on_session_lost = on_session_lost
        self._cost_baseline = 0.0

    def begin_process(self) -> None:
        """Mark the start of a new agent process.

        The agent reports cost per process, so the session cost at this
        point becomes the baseline its reports are added to.
        """
        self._cost_baseline = self._telemetry.cost.session_usd

    def dispatch(self, record: Record) -> None:
        match record.kind:
            case RecordKind.CONTROL_REQUEST:
                self._handle_control_request(record)
            case RecordKind.CONTROL_RESPONSE:
                self._handle_control_response(record)
            case RecordKind.RESULT:
                self._handle_result(record)
            case RecordKind.ASSISTANT:
                self._handle_assistant(record)
            case RecordKind.SYSTEM:
                self._handle_system(record)
            case RecordKind.USER:
                self._forward(record)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_control_request(self, record: Record) -> None:
        request = record.payload.get("request")
        request_id = record.payload.get("request_id")
        if not isinstance(request, dict) or not isinstance(request_id, str):
            logger.warning("Malformed control request: %s", record.payload)
            return
        subtype = request.get("subtype")
        if subtype != "can_use_tool":
            logger.info("Ignoring control request of subtype %r", subtype)
            return

        tool_input = request.get("input")
        suggestions = request.get("permission_suggestions")
        self._negotiator.request_permission(
            request_id,
            _str_or(request.get("tool_name"), "Unknown Tool"),
            tool_input if isinstance(tool_input, dict) else {},
            suggestions if isinstance(suggestions, list) else None,
            _str_or(request.get("tool_use_id"), request_id),
            decision_reason=_str_or(request.get("decision_reason"), None),
            blocked_path=_str_or(request.get("blocked_path"), None),
        )

    def _handle_control_response(self, record: Record) -> None:
        response = _nested(record.payload, "response", "response")
        account = response.get("account")
        if not isinstance(account, dict):
            logger.debug("Ignoring control response without account info")
            return
        self._channel.publish(
            AccountInfoEvent(
                subscription_type=_str_or(account.get("subscriptionType"), None),
                email=_str_or(account.get("email"), None),
            )
        )

    def _handle_result(self, record: Record) -> None:
        payload = record.payload
        self._close_input()

        if record.subtype != "success" and record.session_not_found:
            logger.warning("Agent could not resume the session; it will start fresh")
            if self._on_session_lost is not None:
                self._on_session_lost()
        elif record.session_id:
            self._on_session_id(record.session_id)

        cost = payload.get("total_cost_usd")
        cost_usd = float(cost) if _is_number(cost) else None
        if cost_usd is not None:
            state = self._telemetry.record_cost(self._cost_baseline + cost_usd)
            self._channel.publish(
                CostUpdatedEvent(
                    session_usd=state.session_usd,
                    all_time_usd=state.all_time_usd,
                )
            )

        self._forward(record)
        duration = payload.get("duration_ms")
        num_turns = payload.get("num_turns")
        self._channel.publish(
            TurnCompletedEvent(
                session_id=record.session_id,
                cost_usd=cost_usd,
                duration_ms=int(duration) if _is_number(duration) else None,
                num_turns=int(num_turns) if _is_number(num_turns) else None,
                is_error=bool(payload.get("is_error")) or record.subtype != "success",
            )
        )

    def _handle_assistant(self, record: Record) -> None:
        usage = record.message.get("usage")
        if isinstance(usage, dict):
            snapshot = self._telemetry.record_usage(usage)
            self._channel.publish(UsageUpdatedEvent(snapshot=snapshot))
        self._forward(record)

    def _handle_system(self, record: Record) -> None:
        if record.subtype == "init" and record.session_id:
            self._on_session_id(record.session_id)
        elif record.subtype == "compact_boundary":
            self._telemetry.reset_tokens_only()
            self._channel.publish(UsageUpdatedEvent(snapshot=self._telemetry.usage))
        self._forward(record)

    def _forward(self, record: Record) -> None:
        self._channel.publish(
            RecordForwardedEvent(kind=record.kind.value, payload=record.payload)
        )


def _nested(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
    node: Any = payload
    for key in keys:
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def _str_or(value: Any, default: str | None) -> Any:
    return value if isinstance(value, str) and value else default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
