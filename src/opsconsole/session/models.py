"""Session data models — terminal dimensions, session state, and output events."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Dimensions:
    """Terminal size in character cells."""

    cols: int
    rows: int

    def __post_init__(self) -> None:
        if self.cols < 1 or self.rows < 1:
            raise ValueError(f"Invalid terminal size {self.cols}x{self.rows}")


@dataclass
class Session:
    """One interactive shell multiplexed over the server connection.

    ``busy`` is set while a create request awaits its first response;
    ``dirty`` while a resize is waiting for the debounce window to close.
    """

    id: str
    display_name: str = ""
    working_directory: str = ""
    last_known_dimensions: Dimensions = field(
        default_factory=lambda: Dimensions(cols=80, rows=24)
    )
    container_id: str | None = None
    connected: bool = False
    busy: bool = False
    dirty: bool = False
    opened_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.id


class SessionEventKind(enum.Enum):
    """What a session subscriber is being told."""

    OUTPUT = "output"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionEvent:
    """Terminal output, a server-reported error, or a close notice."""

    kind: SessionEventKind
    session_id: str
    text: str = ""
    timestamp: float = field(default_factory=time.time)
