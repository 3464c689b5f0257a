"""Pydantic v2 models for persisted conversations and their replay."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TranscriptEntry(BaseModel):
    """One append-only line of a conversation transcript.

    Extra keys are kept so documents written by other front ends, which
    flatten their payload next to ``type``, still load and replay.
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(
        validation_alias=AliasChoices("type", "messageType"),
        description="Entry kind, e.g. 'userInput' or 'output'",
    )
    data: Any = Field(default=None, description="Kind-specific payload")
    timestamp: str | None = Field(
        default=None, description="ISO 8601 timestamp with milliseconds"
    )


class TokenTotals(BaseModel):
    """Aggregate token counts stored with a saved conversation."""

    input: int = 0
    output: int = 0


class Conversation(BaseModel):
    """A full persisted conversation document."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str = Field(alias="endTime")
    message_count: int = Field(alias="messageCount")
    total_cost: float = Field(default=0.0, alias="totalCost")
    total_tokens: TokenTotals = Field(default_factory=TokenTotals, alias="totalTokens")
    messages: list[TranscriptEntry] = Field(default_factory=list)
    filename: str | None = None


class ConversationIndexEntry(BaseModel):
    """Summary of one saved conversation, kept in ``index.json``."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str
    session_id: str = Field(alias="sessionId")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str = Field(alias="endTime")
    message_count: int = Field(alias="messageCount")
    total_cost: float = Field(default=0.0, alias="totalCost")
    first_user_message: str = Field(default="", alias="firstUserMessage")
    last_user_message: str = Field(default="", alias="lastUserMessage")


ReplayType = Literal[
    "user", "assistant", "thinking", "tool_use", "tool_result", "error"
]
ToolStatus = Literal["executing", "completed", "failed"]


class ReplayMessage(BaseModel):
    """A UI-facing message reconstructed from transcript entries."""

    id: str
    type: ReplayType
    content: str = ""
    timestamp: str | None = None
    is_streaming: bool = False
    usage: dict[str, int] | None = None
    tool_use_id: str | None = None
    tool_name: str | None = None
    raw_input: dict[str, Any] | None = None
    tool_info: str | None = None
    status: ToolStatus | None = None
    is_error: bool = False
