"""Small JSON file helpers shared by the persistent stores."""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from switchboard.errors import PersistenceError


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write *content* to a temp file beside *path*, fsync it, then rename it over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()


def write_json(path: Path, data: Any) -> None:
    """Atomically write *data* as indented JSON.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    try:
        atomic_write_text(path, json.dumps(data, indent=2) + "\n")
    except OSError as exc:
        msg = f"Cannot write {path}: {exc}"
        raise PersistenceError(msg, path) from exc


def read_json(path: Path) -> Any:
    """Read a JSON document, returning ``None`` when the file does not exist.

    Raises:
        PersistenceError: If the file exists but cannot be read or parsed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        msg = f"Cannot read {path}: {exc}"
        raise PersistenceError(msg, path) from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON in {path.name} (line {exc.lineno})"
        raise PersistenceError(msg, path) from exc


def iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
