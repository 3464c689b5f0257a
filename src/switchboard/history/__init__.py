"""Conversation persistence and replay."""

from switchboard.history.models import (
    Conversation,
    ConversationIndexEntry,
    ReplayMessage,
    TokenTotals,
    TranscriptEntry,
)

__all__ = [
    "Conversation",
    "ConversationIndexEntry",
    "ReplayMessage",
    "TokenTotals",
    "TranscriptEntry",
]
