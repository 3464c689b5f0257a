"""Agent process supervision, protocol dispatch, permissions and telemetry."""

from switchboard.agent.dispatcher import ProtocolDispatcher
from switchboard.agent.permissions import (
    PendingPermissionRequest,
    PermissionNegotiator,
    PermissionRuleStore,
    command_pattern,
    matches_pattern,
)
from switchboard.agent.supervisor import (
    ProcessSupervisor,
    SendOptions,
    SupervisorListener,
    TerminationPhase,
)
from switchboard.agent.telemetry import CostState, TelemetryAccumulator

__all__ = [
    "CostState",
    "PendingPermissionRequest",
    "PermissionNegotiator",
    "PermissionRuleStore",
    "ProcessSupervisor",
    "ProtocolDispatcher",
    "SendOptions",
    "SupervisorListener",
    "TelemetryAccumulator",
    "TerminationPhase",
    "command_pattern",
    "matches_pattern",
]
