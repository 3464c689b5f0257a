"""Conversation store: in-memory transcript plus JSON documents and an index."""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path

from pydantic import ValidationError

from switchboard.constants import DEFAULT_MAX_HISTORY, INDEX_FILE, PREVIEW_CHARS
from switchboard.errors import PersistenceError
from switchboard.history.models import (
    Conversation,
    ConversationIndexEntry,
    TokenTotals,
    TranscriptEntry,
)
from switchboard.storage import iso_now, read_json, write_json

logger = logging.getLogger(__name__)

#: A loadable handle: a bare file name ending in .json.
_HANDLE_RE = re.compile(r"^[A-Za-z0-9_.-]+\.json$")


class ConversationStore:
    """Records the current transcript and persists finished conversations.

    Each ``save()`` writes a new document and upserts the index entry for
    its session, so the index holds one entry per session while older
    documents of the same session stay on disk.

    Thread-safe: index updates are serialized through a ``threading.Lock``.
    """

    def __init__(
        self,
        conversations_dir: Path,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        self._dir = conversations_dir
        self._max_history = max_history
        self._lock = threading.Lock()
        self._transcript: list[TranscriptEntry] = []
        self._start_time: str | None = None
        self._index = self._load_index()

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def transcript(self) -> list[TranscriptEntry]:
        """A copy of the in-memory transcript."""
        return list(self._transcript)

    @property
    def start_time(self) -> str | None:
        return self._start_time

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------

    def append(self, entry: TranscriptEntry) -> None:
        """Add *entry*, stamping its timestamp when it has none."""
        if entry.timestamp is None:
            entry.timestamp = iso_now()
        if not self._transcript:
            self._start_time = entry.timestamp
        self._transcript.append(entry)

    def clear(self) -> None:
        """Forget the in-memory transcript; saved documents are untouched."""
        self._transcript = []
        self._start_time = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(
        self,
        session_id: str | None,
        *,
        total_cost: float = 0.0,
        total_tokens: TokenTotals | None = None,
    ) -> ConversationIndexEntry | None:
        """Write the transcript to a new document and update the index.

        Returns:
            The index entry, or None when there is nothing to save or the
            write failed.
        """
        if not self._transcript or not session_id:
            return None

        end_time = iso_now()
        messages = list(self._transcript)
        with self._lock:
            path = self._unique_path(end_time)
            conversation = Conversation(
                session_id=session_id,
                start_time=self._start_time,
                end_time=end_time,
                message_count=len(messages),
                total_cost=total_cost,
                total_tokens=total_tokens or TokenTotals(),
                messages=messages,
                filename=path.name,
            )
            entry = ConversationIndexEntry(
                filename=path.name,
                session_id=session_id,
                start_time=self._start_time,
                end_time=end_time,
                message_count=len(messages),
                total_cost=total_cost,
                first_user_message=_preview(messages, first=True),
                last_user_message=_preview(messages, first=False),
            )
            try:
                write_json(path, conversation.model_dump(mode="json", by_alias=True))
                index = [entry, *(e for e in self._index if e.session_id != session_id)]
                index.sort(key=lambda e: e.end_time, reverse=True)
                self._write_index(index[: self._max_history])
            except PersistenceError as exc:
                logger.error("Failed to save conversation: %s", exc)
                return None
        logger.info("Saved conversation %s (%d entries)", path.name, len(messages))
        return entry

    def load(self, handle: str) -> Conversation | None:
        """Load a saved conversation and make it the current transcript.

        Returns None for invalid handles, missing files and unreadable
        documents.
        """
        if not _HANDLE_RE.match(handle) or handle == INDEX_FILE:
            logger.warning("Rejecting conversation handle %r", handle)
            return None
        path = self._dir / handle
        try:
            data = read_json(path)
            if data is None:
                logger.info("Conversation %s not found", handle)
                return None
            conversation = Conversation.model_validate(data)
        except PersistenceError as exc:
            logger.error("Failed to load conversation: %s", exc)
            return None
        except ValidationError as exc:
            logger.error("Malformed conversation %s: %s", handle, exc)
            return None

        conversation.filename = handle
        self._transcript = list(conversation.messages)
        self._start_time = conversation.start_time
        return conversation

    def list_index(self) -> list[ConversationIndexEntry]:
        """Index entries, newest first."""
        with self._lock:
            return sorted(self._index, key=lambda e: e.end_time, reverse=True)

    def delete(self, handle: str) -> bool:
        """Remove a saved document and its index entry."""
        if not _HANDLE_RE.match(handle) or handle == INDEX_FILE:
            logger.warning("Rejecting conversation handle %r", handle)
            return False
        path = self._dir / handle
        with self._lock:
            in_index = any(e.filename == handle for e in self._index)
            try:
                path.unlink()
                existed = True
            except FileNotFoundError:
                existed = False
            except OSError as exc:
                logger.error("Failed to delete %s: %s", path, exc)
                return False
            if in_index:
                try:
                    self._write_index([e for e in self._index if e.filename != handle])
                except PersistenceError as exc:
                    logger.error("Failed to update conversation index: %s", exc)
                    return False
        return existed or in_index

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _unique_path(self, end_time: str) -> Path:
        stem = "conversation-" + re.sub(r"[:.]", "-", end_time)
        path = self._dir / f"{stem}.json"
        counter = 1
        while path.exists():
            path = self._dir / f"{stem}-{counter}.json"
            counter += 1
        return path

    def _load_index(self) -> list[ConversationIndexEntry]:
        path = self._dir / INDEX_FILE
        try:
            data = read_json(path)
        except PersistenceError as exc:
            logger.error("Ignoring unreadable conversation index: %s", exc)
            return []
        if not isinstance(data, list):
            return []
        entries: list[ConversationIndexEntry] = []
        for raw in data:
            try:
                entries.append(ConversationIndexEntry.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed index entry: %s", raw)
        return entries

    def _write_index(self, entries: list[ConversationIndexEntry]) -> None:
        write_json(
            self._dir / INDEX_FILE,
            [e.model_dump(mode="json", by_alias=True) for e in entries],
        )
        self._index = entries


def _preview(messages: list[TranscriptEntry], *, first: bool) -> str:
    user_inputs = [m for m in messages if m.type == "userInput"]
    if not user_inputs:
        return ""
    data = (user_inputs[0] if first else user_inputs[-1]).data
    text = data if isinstance(data, str) else ""
    return text[:PREVIEW_CHARS] + "..." if len(text) > PREVIEW_CHARS else text
