"""Stream registry — per-stream state, micro-batched flushing, auto-scroll."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable

from opsconsole.connection.models import FrameSender
from opsconsole.errors import AgentConnectionError, StreamEndedError, StreamStartError
from opsconsole.protocol.codec import logs_stream_start_frame, logs_stream_stop_frame
from opsconsole.scheduling import ScheduledTask
from opsconsole.streams.buffer import RingBuffer
from opsconsole.streams.models import GRACEFUL_END_REASON, Line, Stream, StreamState

logger = logging.getLogger(__name__)

LinesListener = Callable[[str, list[Line]], None]
ScrollListener = Callable[[str], None]

# Reason recorded when the transport drops under a live stream
CONNECTION_LOST_REASON = "connection_lost"


class LogBatcher:
    """Coalesces log lines from every stream into one periodic flush.

    A single shared timer serves all streams; scheduling while a flush is
    already pending is a no-op.
    """

    def __init__(self, interval: float, flush: Callable[[], None]) -> None:
        self._task = ScheduledTask(interval, flush)

    @property
    def pending(self) -> bool:
        return self._task.pending

    def schedule(self) -> None:
        self._task.schedule()

    def cancel(self) -> None:
        self._task.cancel()


class StreamRegistry:
    """Owns every log stream of one server connection.

    UI code holds stream ids only and learns about changes through the
    ``on_lines`` / ``on_scroll_to_bottom`` / ``on_state`` listeners.
    """

    def __init__(
        self,
        connection: FrameSender,
        max_lines: int = 5000,
        flush_interval: float = 0.1,
        start_timeout: float = 5.0,
        autoscroll_threshold: float = 50,
    ) -> None:
        self._connection = connection
        self._max_lines = max_lines
        self._start_timeout = start_timeout
        self._autoscroll_threshold = autoscroll_threshold
        self._streams: dict[str, Stream] = {}
        self._batcher = LogBatcher(flush_interval, self.flush)
        self._line_listeners: list[LinesListener] = []
        self._scroll_listeners: list[ScrollListener] = []
        self._state_listeners: list[Callable[[Stream], None]] = []

    # --- Listeners ---

    def on_lines(self, callback: LinesListener) -> None:
        self._line_listeners.append(callback)

    def on_scroll_to_bottom(self, callback: ScrollListener) -> None:
        self._scroll_listeners.append(callback)

    def on_state(self, callback: Callable[[Stream], None]) -> None:
        self._state_listeners.append(callback)

    # --- Queries ---

    def get(self, stream_id: str) -> Stream | None:
        return self._streams.get(stream_id)

    @property
    def streams(self) -> list[Stream]:
        return list(self._streams.values())

    @property
    def batch_pending(self) -> bool:
        return self._batcher.pending

    # --- Lifecycle ---

    async def start(self, container_id: str, tail_lines: int = 200) -> str:
        """Begin tailing a container and return the new stream id.

        If the connection is not open it is connected first; the start frame
        waits in the pending queue.  Gives up after the bounded start wait.
        """
        stream_id = self._new_stream_id()
        stream = Stream(
            id=stream_id,
            container_id=container_id,
            buffer=RingBuffer(self._max_lines),
            tail=tail_lines,
        )
        self._streams[stream_id] = stream
        self._connection.send(
            logs_stream_start_frame(stream_id, container_id, tail_lines)
        )

        if not self._connection.is_open:
            try:
                await asyncio.wait_for(
                    self._connection.connect(), timeout=self._start_timeout
                )
            except (asyncio.TimeoutError, AgentConnectionError) as e:
                reason = f"failed to start: {str(e) or 'timed out'}"
                logger.warning(
                    "Log stream %s for %s %s", stream_id, container_id, reason
                )
                if stream.state is not StreamState.ENDED:
                    # The start frame may still go out later from the pending queue
                    self._connection.send(logs_stream_stop_frame(stream_id))
                    self._end(stream, reason)
                raise StreamStartError(
                    f"Log stream for container {container_id} did not start "
                    f"within {self._start_timeout:g}s"
                ) from e

        if stream.state is StreamState.STARTING:
            stream.state = StreamState.STREAMING
            self._notify_state(stream)
        logger.info("Log stream %s started for container %s", stream_id, container_id)
        return stream_id

    def stop(self, stream_id: str) -> None:
        """Stop a stream locally at once; the server is told fire-and-forget."""
        stream = self._streams.get(stream_id)
        if stream is None or stream.state is StreamState.ENDED:
            return
        self._connection.send(logs_stream_stop_frame(stream_id))
        self._flush_stream(stream)
        stream.state = StreamState.ENDED
        stream.end_reason = "stopped"
        stream.ended_at = time.time()
        logger.info("Log stream %s stopped", stream_id)
        self._notify_state(stream)

    def remove(self, stream_id: str) -> None:
        """Stop (if needed) and forget a stream, e.g. when its view closes."""
        self.stop(stream_id)
        self._streams.pop(stream_id, None)

    def close_all(self) -> None:
        for stream_id in list(self._streams):
            self.remove(stream_id)
        self._batcher.cancel()

    # --- Inbound (called by the frame router) ---

    def on_data(self, stream_id: str, chunk: str) -> None:
        stream = self._streams.get(stream_id)
        if stream is None or stream.state is StreamState.ENDED:
            logger.debug("Dropping data for inactive stream %s", stream_id)
            return
        if stream.state is StreamState.STARTING:
            stream.state = StreamState.STREAMING
            self._notify_state(stream)

        pieces = chunk.split("\n")
        if pieces and pieces[-1] == "":
            pieces.pop()
        if not pieces:
            return
        stream.pending.extend(Line.from_raw(p) for p in pieces)
        self._batcher.schedule()

    def on_end(self, stream_id: str, reason: str) -> None:
        stream = self._streams.get(stream_id)
        if stream is None or stream.state is StreamState.ENDED:
            return
        self._end(stream, reason)

    def connection_lost(self) -> None:
        """End every live stream: the server-side readers died with the socket."""
        for stream in list(self._streams.values()):
            if stream.state is not StreamState.ENDED:
                self._end(stream, CONNECTION_LOST_REASON)

    # --- Auto-scroll ---

    def on_scroll(
        self,
        stream_id: str,
        scroll_top: float,
        scroll_height: float,
        client_height: float,
    ) -> None:
        """Track whether the viewport is pinned to the bottom."""
        stream = self._streams.get(stream_id)
        if stream is None:
            return
        distance = scroll_height - scroll_top - client_height
        stream.auto_scroll = distance <= self._autoscroll_threshold

    def set_auto_scroll(self, stream_id: str, enabled: bool) -> None:
        stream = self._streams.get(stream_id)
        if stream is None:
            return
        stream.auto_scroll = enabled
        if enabled:
            self._emit_scroll(stream_id)

    # --- Flushing ---

    def flush(self) -> None:
        """Move every stream's pending lines into its buffer."""
        for stream in list(self._streams.values()):
            self._flush_stream(stream)

    def _flush_stream(self, stream: Stream) -> None:
        if not stream.pending:
            return
        new_lines = stream.pending
        stream.pending = []
        stream.buffer.extend(new_lines)
        for callback in list(self._line_listeners):
            try:
                callback(stream.id, new_lines)
            except Exception:
                logger.exception("Line listener failed for stream %s", stream.id)
        if stream.auto_scroll:
            self._emit_scroll(stream.id)

    def _emit_scroll(self, stream_id: str) -> None:
        for callback in list(self._scroll_listeners):
            try:
                callback(stream_id)
            except Exception:
                logger.exception("Scroll listener failed for stream %s", stream_id)

    # --- Internals ---

    def _new_stream_id(self) -> str:
        while True:
            stream_id = uuid.uuid4().hex
            if stream_id not in self._streams:
                return stream_id

    def _end(self, stream: Stream, reason: str) -> None:
        self._flush_stream(stream)
        marker = Line.end_marker(reason)
        stream.buffer.append(marker)
        for callback in list(self._line_listeners):
            try:
                callback(stream.id, [marker])
            except Exception:
                logger.exception("Line listener failed for stream %s", stream.id)
        if stream.auto_scroll:
            self._emit_scroll(stream.id)

        stream.state = StreamState.ENDED
        stream.end_reason = reason
        stream.ended_at = time.time()
        if reason != GRACEFUL_END_REASON:
            stream.error = StreamEndedError(stream.id, reason)
        logger.info("Log stream %s ended: %s", stream.id, reason)
        self._notify_state(stream)

    def _notify_state(self, stream: Stream) -> None:
        for callback in list(self._state_listeners):
            try:
                callback(stream)
            except Exception:
                logger.exception("State listener failed for stream %s", stream.id)
