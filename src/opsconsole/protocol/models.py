"""Frame data models — the canonical shape of every inbound message."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class FrameKind(enum.Enum):
    """Recognized ``type`` values of the agent protocol."""

    WELCOME = "welcome"
    HEARTBEAT = "heartbeat"
    SHELL_COMMAND = "shell_command"
    SHELL_RESPONSE = "shell_response"
    SHELL_ERROR = "shell_error"
    SHELL_CLOSE = "shell_close"
    LOGS_STREAM = "docker_logs_stream"
    LOGS_STREAM_DATA = "docker_logs_stream_data"
    LOGS_STREAM_END = "docker_logs_stream_end"
    ERROR = "error"
    STATUS = "status"
    MONITOR = "monitor"
    NO_DATA = "no_data"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, value: str) -> FrameKind:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


SHELL_KINDS = frozenset(
    {FrameKind.SHELL_RESPONSE, FrameKind.SHELL_ERROR, FrameKind.SHELL_CLOSE}
)
STREAM_KINDS = frozenset({FrameKind.LOGS_STREAM_DATA, FrameKind.LOGS_STREAM_END})


class ShellCommand(enum.Enum):
    """Sub-commands carried by an outbound ``shell_command`` frame."""

    INPUT = "input"
    RESIZE = "resize"
    CREATE = "create"
    CLOSE = "close"


class StreamAction(enum.Enum):
    START = "start"
    STOP = "stop"


@dataclass(frozen=True)
class Frame:
    """A decoded inbound frame.

    ``target_id`` is the session id for shell frames and the stream id for
    log stream frames; it is None for connection-level frames.  ``type``
    keeps the wire value so UNKNOWN frames can still be reported.
    """

    kind: FrameKind
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    target_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_unknown(self) -> bool:
        return self.kind is FrameKind.UNKNOWN
