"""Frame router — dispatches decoded frames to the session and stream registries."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from opsconsole.errors import ProtocolError
from opsconsole.protocol.codec import decode_frame
from opsconsole.protocol.models import Frame, FrameKind
from opsconsole.server_info import ServerInfo
from opsconsole.session.registry import SessionRegistry
from opsconsole.streams.registry import StreamRegistry

logger = logging.getLogger(__name__)

MonitorSink = Callable[[dict[str, Any]], None]


def _text(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str):
            return value
    return ""


class FrameRouter:
    """Turns raw socket messages into registry calls.

    ``handle()`` never raises: malformed or unexpected frames are logged and
    dropped so one bad message cannot take the session down.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        streams: StreamRegistry,
        server_info: ServerInfo,
        on_heartbeat: Callable[[], None] | None = None,
        on_monitor: MonitorSink | None = None,
    ) -> None:
        self._sessions = sessions
        self._streams = streams
        self._server_info = server_info
        self._on_heartbeat = on_heartbeat
        self._on_monitor = on_monitor
        self._handlers: dict[FrameKind, Callable[[Frame], None]] = {
            FrameKind.WELCOME: self._handle_welcome,
            FrameKind.HEARTBEAT: self._handle_heartbeat,
            FrameKind.SHELL_RESPONSE: self._handle_shell_response,
            FrameKind.SHELL_ERROR: self._handle_shell_error,
            FrameKind.SHELL_CLOSE: self._handle_shell_close,
            FrameKind.LOGS_STREAM_DATA: self._handle_stream_data,
            FrameKind.LOGS_STREAM_END: self._handle_stream_end,
            FrameKind.ERROR: self._handle_error,
            FrameKind.STATUS: self._handle_status,
            FrameKind.MONITOR: self._handle_monitor,
            FrameKind.NO_DATA: self._handle_no_data,
        }

    def handle(self, raw: str | bytes) -> Frame | None:
        """Decode and dispatch one message; returns the frame if it decoded."""
        try:
            frame = decode_frame(raw)
        except ProtocolError as e:
            logger.warning("Dropping malformed frame: %s", e)
            return None

        handler = self._handlers.get(frame.kind)
        if handler is None:
            # UNKNOWN, and outbound-only kinds echoed back by the server
            logger.info("Ignoring frame of type %r", frame.type)
            return frame
        try:
            handler(frame)
        except Exception:
            logger.exception("Handler for %r frame failed", frame.type)
        return frame

    # --- Connection-level frames ---

    def _handle_welcome(self, frame: Frame) -> None:
        self._server_info.merge_welcome(frame.payload)
        logger.info("Welcome from server %s", self._server_info.server_id)

    def _handle_heartbeat(self, frame: Frame) -> None:
        if self._on_heartbeat is not None:
            self._on_heartbeat()
        metrics = self._server_info.merge_monitor(frame.payload)
        if metrics and self._on_monitor is not None:
            self._on_monitor(metrics)

    def _handle_status(self, frame: Frame) -> None:
        self._server_info.merge_status(frame.payload)

    def _handle_monitor(self, frame: Frame) -> None:
        metrics = self._server_info.merge_monitor(frame.payload)
        if not metrics:
            logger.debug("Monitor frame without recognized metrics")
            return
        if self._on_monitor is not None:
            self._on_monitor(metrics)

    def _handle_no_data(self, frame: Frame) -> None:
        self._server_info.mark_no_data(_text(frame.payload, "message"))

    def _handle_error(self, frame: Frame) -> None:
        message = _text(frame.payload, "message", "error") or "unknown error"
        logger.warning("Server %s reported: %s", self._server_info.server_id, message)
        self._server_info.record_error(message)

    # --- Shell frames ---

    def _handle_shell_response(self, frame: Frame) -> None:
        if frame.target_id is None:
            logger.debug("shell_response without session id")
            return
        working_dir = frame.payload.get("working_dir")
        self._sessions.dispatch_output(
            frame.target_id,
            _text(frame.payload, "data", "output"),
            working_directory=working_dir if isinstance(working_dir, str) else None,
        )

    def _handle_shell_error(self, frame: Frame) -> None:
        if frame.target_id is None:
            logger.debug("shell_error without session id")
            return
        message = _text(frame.payload, "error", "message", "data")
        self._sessions.dispatch_error(frame.target_id, message or "unknown error")

    def _handle_shell_close(self, frame: Frame) -> None:
        if frame.target_id is None:
            return
        self._sessions.dispatch_close(frame.target_id, _text(frame.payload, "message"))

    # --- Log stream frames ---

    def _handle_stream_data(self, frame: Frame) -> None:
        if frame.target_id is None:
            logger.debug("Log stream data without stream_id")
            return
        self._streams.on_data(frame.target_id, _text(frame.payload, "logs"))

    def _handle_stream_end(self, frame: Frame) -> None:
        if frame.target_id is None:
            logger.debug("Log stream end without stream_id")
            return
        self._streams.on_end(frame.target_id, _text(frame.payload, "reason"))
