"""Connection data models — lifecycle state and the public connection record."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Protocol


class ConnectionState(enum.Enum):
    """Lifecycle state of the agent WebSocket."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# Close codes that end a connection without reconnecting
NORMAL_CLOSE_CODES = frozenset({1000, 1001})
# Reported when the socket dropped without a close frame
ABNORMAL_CLOSE_CODE = 1006


class ReconnectPhase(enum.Enum):
    """Where the reconnect state machine stands."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    UNEXPECTEDLY_CLOSED = "unexpectedly_closed"
    BACKOFF = "backoff"
    GAVE_UP = "gave_up"


@dataclass(frozen=True)
class Connection:
    """Read-only snapshot of one server's connection."""

    server_id: str
    state: ConnectionState
    phase: ReconnectPhase = ReconnectPhase.DISCONNECTED
    reconnect_attempt: int = 0
    heartbeat_failure_count: int = 0
    last_opened_at: float | None = None

    @property
    def gave_up(self) -> bool:
        return self.phase is ReconnectPhase.GAVE_UP

    @property
    def reconnecting(self) -> bool:
        return self.phase in (
            ReconnectPhase.UNEXPECTEDLY_CLOSED,
            ReconnectPhase.BACKOFF,
        ) or (
            self.phase is ReconnectPhase.CONNECTING and self.reconnect_attempt > 0
        )


class FrameSender(Protocol):
    """What the session and stream registries need from a connection."""

    @property
    def is_open(self) -> bool: ...

    def send(self, frame: dict[str, Any]) -> bool: ...

    async def connect(self, token: str | None = None) -> None: ...
