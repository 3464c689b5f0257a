"""Outbound event models and the channel that carries them."""

from switchboard.session.channel import EventChannel
from switchboard.session.models import (
    BridgeEvent,
    PermissionStatus,
    TokenCounts,
    TokenUsageSnapshot,
)

__all__ = [
    "BridgeEvent",
    "EventChannel",
    "PermissionStatus",
    "TokenCounts",
    "TokenUsageSnapshot",
]
