"""Log stream data models — lines, stream state, and the Stream record."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field

from opsconsole.errors import StreamEndedError
from opsconsole.streams.buffer import RingBuffer
from opsconsole.streams.levels import LogLevel, detect_log_level, render_log_line

# Reason the agent sends when the container's log reader hits EOF
GRACEFUL_END_REASON = "container_stopped"


class StreamState(enum.Enum):
    """Lifecycle state of a log tail."""

    STARTING = "starting"
    STREAMING = "streaming"
    ENDED = "ended"


@dataclass(frozen=True)
class Line:
    """One log line. Immutable once appended."""

    text: str
    level: LogLevel | None = None
    marker: bool = False

    @classmethod
    def from_raw(cls, raw: str) -> Line:
        text = render_log_line(raw)
        return cls(text=text, level=detect_log_level(text))

    @classmethod
    def end_marker(cls, reason: str) -> Line:
        """Synthetic line describing why a stream ended."""
        if reason == GRACEFUL_END_REASON:
            return cls(
                text="--- container stopped ---", level=LogLevel.INFO, marker=True
            )
        return cls(
            text=f"--- log stream ended: {reason or 'unknown reason'} ---",
            level=LogLevel.ERROR,
            marker=True,
        )


@dataclass
class Stream:
    """A single container log tail multiplexed over the connection."""

    id: str
    container_id: str
    buffer: RingBuffer[Line]
    tail: int = 200
    state: StreamState = StreamState.STARTING
    auto_scroll: bool = True
    pending: list[Line] = field(default_factory=list)
    end_reason: str = ""
    error: StreamEndedError | None = None
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    @property
    def active(self) -> bool:
        return self.state is not StreamState.ENDED

    def lines(self) -> list[Line]:
        return self.buffer.snapshot()
