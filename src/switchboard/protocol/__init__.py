"""Wire format of the agent's stream-json protocol."""

from switchboard.protocol.framer import LineFramer, decode_line
from switchboard.protocol.records import (
    Record,
    RecordKind,
    encode,
    permission_allow,
    permission_deny,
    user_message,
)

__all__ = [
    "LineFramer",
    "Record",
    "RecordKind",
    "decode_line",
    "encode",
    "permission_allow",
    "permission_deny",
    "user_message",
]
