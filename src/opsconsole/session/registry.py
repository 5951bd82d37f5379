"""Session registry — terminal sessions over the shared server connection."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable

from opsconsole.connection.models import FrameSender
from opsconsole.errors import SessionError
from opsconsole.protocol.codec import resize_frame, shell_command_frame
from opsconsole.protocol.models import ShellCommand
from opsconsole.scheduling import ScheduledTask
from opsconsole.session.models import (
    Dimensions,
    Session,
    SessionEvent,
    SessionEventKind,
)

logger = logging.getLogger(__name__)

SessionCallback = Callable[[SessionEvent], None]


class SessionRegistry:
    """Tracks open terminal sessions and routes their output to subscribers.

    Sessions are keyed by their opaque id.  Callers never mutate a Session
    directly; every change goes through this registry.
    """

    def __init__(self, connection: FrameSender, resize_debounce: float = 0.016) -> None:
        self._connection = connection
        self._resize_debounce = resize_debounce
        self._sessions: dict[str, Session] = {}
        self._resize_tasks: dict[str, ScheduledTask] = {}
        self._subscribers: dict[int, tuple[str, SessionCallback]] = {}
        self._tokens = itertools.count(1)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    # --- Subscriptions ---

    def subscribe(self, session_id: str, callback: SessionCallback) -> int:
        """Register an output callback; returns a token for unsubscribe()."""
        token = next(self._tokens)
        self._subscribers[token] = (session_id, callback)
        return token

    def unsubscribe(self, token: int) -> None:
        self._subscribers.pop(token, None)

    # --- Lifecycle ---

    def open(self, session: Session, create: bool = False) -> Session:
        """Register a session; it stays disconnected until the server answers."""
        session.connected = False
        session.dirty = False
        self._sessions[session.id] = session
        if create:
            session.busy = True
            self._connection.send(
                shell_command_frame(
                    ShellCommand.CREATE,
                    session.id,
                    container_id=session.container_id,
                )
            )
        logger.info("Opened terminal session %s", session.id)
        return session

    def write(self, session_id: str, data: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        self._connection.send(
            shell_command_frame(
                ShellCommand.INPUT,
                session_id,
                data,
                container_id=session.container_id,
            )
        )

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Record the new size and send it once resizing goes quiet."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        dims = Dimensions(cols=cols, rows=rows)
        session.last_known_dimensions = dims
        session.dirty = True

        task = self._resize_tasks.get(session_id)
        if task is None:
            task = ScheduledTask(
                self._resize_debounce, lambda: self._send_resize(session_id)
            )
            self._resize_tasks[session_id] = task
        task.reschedule()

    def close(self, session_id: str) -> None:
        """Close a session locally and tell the server; late frames are dropped."""
        session = self._sessions.pop(session_id, None)
        task = self._resize_tasks.pop(session_id, None)
        if task is not None:
            task.cancel()
        for token, (sid, _cb) in list(self._subscribers.items()):
            if sid == session_id:
                del self._subscribers[token]
        if session is None:
            return
        self._connection.send(
            shell_command_frame(
                ShellCommand.CLOSE, session_id, container_id=session.container_id
            )
        )
        logger.info("Closed terminal session %s", session_id)

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

    def connection_lost(self) -> None:
        """Unbind every session from the dropped connection."""
        for session in self._sessions.values():
            session.connected = False

    # --- Inbound (called by the frame router) ---

    def dispatch_output(
        self, session_id: str, data: str, working_directory: str | None = None
    ) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Dropping output for unknown session %s", session_id)
            return False
        session.connected = True
        session.busy = False
        if working_directory:
            session.working_directory = working_directory
        if data:
            self._emit(SessionEvent(SessionEventKind.OUTPUT, session_id, data))
        return True

    def dispatch_error(self, session_id: str, message: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Dropping error for unknown session %s", session_id)
            return False
        session.busy = False
        logger.warning("%s", SessionError(session_id, message))
        self._emit(SessionEvent(SessionEventKind.ERROR, session_id, message))
        return True

    def dispatch_close(self, session_id: str, message: str = "") -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.connected = False
        session.busy = False
        self._emit(SessionEvent(SessionEventKind.CLOSED, session_id, message))
        return True

    # --- Internals ---

    def _send_resize(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        dims = session.last_known_dimensions
        session.dirty = False
        self._connection.send(
            resize_frame(
                session_id, dims.cols, dims.rows, container_id=session.container_id
            )
        )

    def _emit(self, event: SessionEvent) -> None:
        for sid, callback in list(self._subscribers.values()):
            if sid != event.session_id:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Session callback failed for %s", event.session_id)
