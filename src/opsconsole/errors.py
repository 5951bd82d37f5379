"""Error taxonomy shared by the connection, session and stream layers."""

from __future__ import annotations


class ConsoleError(Exception):
    """Base class for all opsconsole errors."""


class AgentConnectionError(ConsoleError):
    """Opening the agent WebSocket failed or timed out.

    Recovered automatically by the reconnect policy until it gives up.
    """


class ReconnectExhaustedError(AgentConnectionError):
    """Reconnect attempts are exhausted — a manual retry is required."""

    def __init__(self, server_id: str, attempts: int) -> None:
        super().__init__(
            f"Server {server_id}: disconnected after {attempts} reconnect "
            "attempt(s), manual retry required"
        )
        self.server_id = server_id
        self.attempts = attempts


class ProtocolError(ConsoleError):
    """An inbound frame could not be parsed."""


class SessionError(ConsoleError):
    """The server reported an error for a terminal session."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(f"Session {session_id}: {message}")
        self.session_id = session_id
        self.message = message


class StreamEndedError(ConsoleError):
    """A log stream ended for a reason other than the container stopping."""

    def __init__(self, stream_id: str, reason: str) -> None:
        super().__init__(f"Stream {stream_id} ended: {reason}")
        self.stream_id = stream_id
        self.reason = reason


class StreamStartError(ConsoleError):
    """A log stream could not be started within the bounded wait."""
