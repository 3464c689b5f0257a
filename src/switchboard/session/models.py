"""Pydantic v2 models for the events the bridge emits to its front end."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from switchboard.history.models import ConversationIndexEntry, ReplayMessage

# ------------------------------------------------------------------ #
# Shared value types
# ------------------------------------------------------------------ #


class PermissionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"


class TokenCounts(BaseModel):
    """Four token counters reported by the agent."""

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_creation: int = 0

    @classmethod
    def from_usage(cls, usage: dict[str, Any]) -> TokenCounts:
        """Read the wire ``usage`` object; a missing key counts as zero."""
        return cls(
            input=_as_int(usage.get("input_tokens")),
            output=_as_int(usage.get("output_tokens")),
            cache_read=_as_int(usage.get("cache_read_input_tokens")),
            cache_creation=_as_int(usage.get("cache_creation_input_tokens")),
        )

    def __add__(self, other: TokenCounts) -> TokenCounts:
        return TokenCounts(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_creation=self.cache_creation + other.cache_creation,
        )


class TokenUsageSnapshot(BaseModel):
    """Latest per-message usage plus the running session total."""

    current: TokenCounts = Field(default_factory=TokenCounts)
    cumulative: TokenCounts = Field(default_factory=TokenCounts)


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


# ------------------------------------------------------------------ #
# Events
# ------------------------------------------------------------------ #


class _EventBase(BaseModel):
    """Envelope fields stamped by the event channel on publish."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    ts: str = Field(default="", description="ISO 8601 timestamp with milliseconds")
    seq: int = Field(default=0, ge=0, description="Monotonic sequence number")


class RecordForwardedEvent(_EventBase):
    """A raw agent record passed through for rendering."""

    type: Literal["record_forwarded"] = "record_forwarded"
    kind: str = Field(description="Record type, e.g. 'assistant'")
    payload: dict[str, Any] = Field(description="The record as decoded")


class PermissionRequestedEvent(_EventBase):
    """The agent wants to run a tool and is waiting for a decision."""

    type: Literal["permission_requested"] = "permission_requested"
    request_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    pattern: str | None = Field(
        default=None, description="Command pattern remembered on always-allow"
    )
    suggestions: list[Any] | None = None
    tool_use_id: str | None = None
    decision_reason: str | None = None
    blocked_path: str | None = None


class PermissionResolvedEvent(_EventBase):
    type: Literal["permission_resolved"] = "permission_resolved"
    request_id: str
    status: PermissionStatus
    automatic: bool = Field(
        default=False, description="Resolved by a stored rule or trust-all mode, not the user"
    )


class UsageUpdatedEvent(_EventBase):
    type: Literal["usage_updated"] = "usage_updated"
    snapshot: TokenUsageSnapshot


class CostUpdatedEvent(_EventBase):
    type: Literal["cost_updated"] = "cost_updated"
    session_usd: float
    all_time_usd: float


class AccountInfoEvent(_EventBase):
    type: Literal["account_info"] = "account_info"
    subscription_type: str | None = None
    email: str | None = None


class SessionStartedEvent(_EventBase):
    """The agent assigned (or confirmed) the session identifier."""

    type: Literal["session_started"] = "session_started"
    session_id: str


class TurnCompletedEvent(_EventBase):
    """The agent emitted its ``result`` record for the current turn."""

    type: Literal["turn_completed"] = "turn_completed"
    session_id: str | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    num_turns: int | None = None
    is_error: bool = False


class ProcessEndedEvent(_EventBase):
    type: Literal["process_ended"] = "process_ended"
    exit_code: int | None = None


class ProcessErrorEvent(_EventBase):
    type: Literal["process_error"] = "process_error"
    message: str
    missing_executable: bool = False


class ConversationListEvent(_EventBase):
    type: Literal["conversation_list"] = "conversation_list"
    entries: list[ConversationIndexEntry] = Field(default_factory=list)


class ConversationLoadedEvent(_EventBase):
    type: Literal["conversation_loaded"] = "conversation_loaded"
    handle: str
    found: bool
    session_id: str | None = None
    messages: list[ReplayMessage] = Field(default_factory=list)


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


BridgeEvent = Annotated[
    Annotated[RecordForwardedEvent, Tag("record_forwarded")]
    | Annotated[PermissionRequestedEvent, Tag("permission_requested")]
    | Annotated[PermissionResolvedEvent, Tag("permission_resolved")]
    | Annotated[UsageUpdatedEvent, Tag("usage_updated")]
    | Annotated[CostUpdatedEvent, Tag("cost_updated")]
    | Annotated[AccountInfoEvent, Tag("account_info")]
    | Annotated[SessionStartedEvent, Tag("session_started")]
    | Annotated[TurnCompletedEvent, Tag("turn_completed")]
    | Annotated[ProcessEndedEvent, Tag("process_ended")]
    | Annotated[ProcessErrorEvent, Tag("process_error")]
    | Annotated[ConversationListEvent, Tag("conversation_list")]
    | Annotated[ConversationLoadedEvent, Tag("conversation_loaded")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of every event the bridge emits."""
