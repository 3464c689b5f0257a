"""Shared constants for the Switchboard runtime."""

from __future__ import annotations

#: Executable spawned for the agent when no launcher is configured.
DEFAULT_EXECUTABLE = "claude"

#: Tool whose permissions are remembered as command patterns.
SHELL_TOOL = "Bash"

#: Largest single stdout line accepted from the agent (1 MB).
MAX_LINE_BYTES = 1_048_576

#: Bytes requested per stdout read.
READ_CHUNK_BYTES = 65_536

#: Environment forced onto every agent process.
FORCED_ENV = {"FORCE_COLOR": "0", "NO_COLOR": "1"}

#: Length of the user-message previews kept in the conversation index.
PREVIEW_CHARS = 100

#: Default number of conversations kept in the index.
DEFAULT_MAX_HISTORY = 100

#: Message sent with every denied permission.
DENY_MESSAGE = "User denied permission"

#: Shown when the agent executable cannot be found.
INSTALL_HINT = "Install it with: npm install -g @anthropic-ai/claude-code"

#: File names inside the data directory.
CONVERSATIONS_DIR = "conversations"
INDEX_FILE = "index.json"
PERMISSIONS_FILE = "permissions.json"
TELEMETRY_FILE = "telemetry.json"
