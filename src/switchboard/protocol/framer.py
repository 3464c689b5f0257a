"""Line framer: turns an arbitrarily chunked stdout stream into JSON objects."""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from switchboard.constants import MAX_LINE_BYTES
from switchboard.errors import DecodeError

logger = logging.getLogger(__name__)


def decode_line(line: str) -> dict[str, Any]:
    """Parse a single complete line into a JSON object.

    Raises:
        DecodeError: If the line is not valid JSON or is not an object.
    """
    try:
        value = json.loads(line)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON at column {exc.colno}: {exc.msg}"
        raise DecodeError(msg, line) from exc
    if not isinstance(value, dict):
        msg = f"Expected a JSON object, got {type(value).__name__}"
        raise DecodeError(msg, line)
    return value


class LineFramer:
    """Splits a byte or text stream on newlines and decodes each line.

    At most one partial fragment is retained between ``feed()`` calls, so
    the sequence of yielded objects does not depend on where the chunk
    boundaries fall.  Bytes are decoded incrementally, which keeps a
    multi-byte character intact when it straddles two chunks.
    """

    def __init__(self, max_line_chars: int = MAX_LINE_BYTES) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._max_line_chars = max_line_chars
        self._discarding = False
        self._dropped = 0

    @property
    def pending(self) -> str:
        """The unterminated fragment held since the last chunk."""
        return self._partial

    @property
    def dropped(self) -> int:
        """Number of lines dropped as undecodable or over the length limit."""
        return self._dropped

    def feed(self, chunk: str | bytes) -> Iterator[dict[str, Any]]:
        """Buffer *chunk* and return an iterator over the completed objects.

        Splitting happens eagerly, so feeding the next chunk before the
        returned iterator is exhausted keeps the order intact.
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        lines = (self._partial + text).split("\n")
        self._partial = lines.pop()

        if self._discarding and lines:
            # Tail of a line that already overflowed the buffer.
            lines.pop(0)
            self._discarding = False

        if self._discarding or len(self._partial) > self._max_line_chars:
            if not self._discarding:
                self._dropped += 1
                logger.warning(
                    "Discarding unterminated line longer than %d chars",
                    self._max_line_chars,
                )
            self._discarding = True
            self._partial = ""

        return self._parse(lines)

    def flush(self) -> Iterator[dict[str, Any]]:
        """Drain the decoder and yield the trailing fragment if it parses."""
        tail = self._decoder.decode(b"", final=True)
        remainder = "" if self._discarding else self._partial + tail
        self._partial = ""
        self._discarding = False
        return self._parse([remainder])

    def _parse(self, lines: Iterable[str]) -> Iterator[dict[str, Any]]:
        for raw in lines:
            # Measured before stripping, as the unterminated fragment is.
            if len(raw) > self._max_line_chars:
                self._dropped += 1
                logger.warning("Dropping line of %d chars (over limit)", len(raw))
                continue
            line = raw.strip()
            if not line:
                continue
            try:
                yield decode_line(line)
            except DecodeError as exc:
                self._dropped += 1
                logger.warning("Dropping undecodable line (%s): %s", exc, line[:200])
