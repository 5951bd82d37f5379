"""Connection manager — sole owner of one server's agent WebSocket."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from opsconsole.config import ConsoleConfig
from opsconsole.connection.guard import FileOperationGuard
from opsconsole.connection.models import (
    ABNORMAL_CLOSE_CODE,
    Connection,
    ConnectionState,
    ReconnectPhase,
)
from opsconsole.connection.policy import ReconnectPolicy
from opsconsole.errors import AgentConnectionError, ReconnectExhaustedError
from opsconsole.protocol.codec import encode_frame, heartbeat_frame

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]
MessageHandler = Callable[[str | bytes], None]
StateListener = Callable[[Connection, Exception | None], None]

# Close code used when a dead heartbeat forces the socket down locally
HEARTBEAT_CLOSE_CODE = 4000

# Seconds disconnect() waits for queued frames to be written
DRAIN_TIMEOUT = 1.0


async def _default_connector(url: str) -> Any:
    # Liveness is tracked by application heartbeats, and the open is bounded
    # by the manager's own timeout.
    return await websockets.connect(url, open_timeout=None, ping_interval=None)


class ConnectionManager:
    """Connects, heartbeats, queues and reconnects a single agent WebSocket.

    No other component touches the socket: outbound frames go through
    ``send()``, inbound messages are handed to ``on_message``, and state
    changes are published to listeners registered with ``add_listener()``.

    Everything runs on one asyncio loop, so state is only ever mutated by
    one callback at a time.
    """

    def __init__(
        self,
        server_id: str | int,
        config: ConsoleConfig,
        token: str | None = None,
        session_id: str | None = None,
        on_message: MessageHandler | None = None,
        connector: Connector | None = None,
        guard: FileOperationGuard | None = None,
    ) -> None:
        self._server_id = str(server_id)
        self._config = config
        self._token = token
        self._session_id = session_id
        self._on_message = on_message
        self._connector = connector or _default_connector
        self._guard = guard or FileOperationGuard()
        self._policy = ReconnectPolicy(
            base_delay=config.reconnect_base_delay,
            max_delay=config.reconnect_max_delay,
            max_attempts=config.max_reconnect_attempts,
        )

        self._state = ConnectionState.IDLE
        self._ws: Any = None
        self._pending: deque[str] = deque(maxlen=config.pending_limit)
        self._outbox: asyncio.Queue[str] | None = None
        self._heartbeat_failures = 0
        self._last_opened_at: float | None = None
        self._user_closed = False

        self._connecting: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._listeners: list[StateListener] = []

    # --- Introspection ---

    @property
    def server_id(self) -> str:
        return self._server_id

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def phase(self) -> ReconnectPhase:
        return self._policy.phase

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_attempt(self) -> int:
        return self._policy.attempt

    @property
    def heartbeat_failure_count(self) -> int:
        return self._heartbeat_failures

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def guard(self) -> FileOperationGuard:
        return self._guard

    def snapshot(self) -> Connection:
        return Connection(
            server_id=self._server_id,
            state=self._state,
            reconnect_attempt=self._policy.attempt,
            heartbeat_failure_count=self._heartbeat_failures,
            last_opened_at=self._last_opened_at,
            phase=self._policy.phase,
        )

    def add_listener(self, callback: StateListener) -> None:
        self._listeners.append(callback)

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._on_message = handler

    # --- Public API ---

    async def connect(self, token: str | None = None) -> None:
        """Open the socket, suspending until it is open.

        A no-op when already open; concurrent callers share one attempt.
        Called explicitly after the policy gave up, it starts a fresh
        round of reconnect attempts.  Raises AgentConnectionError on
        failure or timeout (a reconnect is scheduled in the background).
        """
        if token is not None:
            self._token = token
        if self._state is ConnectionState.OPEN:
            return
        self._user_closed = False
        if self._policy.gave_up:
            logger.info("Manual reconnect to server %s", self._server_id)
            self._policy.reset()
        self._cancel_reconnect()
        await self._open()

    def send(self, frame: dict[str, Any]) -> bool:
        """Write a frame now if open, else queue it for the next open.

        Returns True if the frame went to the socket writer.  The pending
        queue is bounded and displaces its oldest frame when full.
        """
        text = encode_frame(frame)
        if self._state is ConnectionState.OPEN and self._outbox is not None:
            self._outbox.put_nowait(text)
            return True
        if len(self._pending) == self._pending.maxlen:
            logger.debug(
                "Pending queue full for server %s — dropping oldest frame",
                self._server_id,
            )
        self._pending.append(text)
        return False

    async def disconnect(self) -> None:
        """User-initiated close with code 1000; never reconnects."""
        self._user_closed = True
        self._cancel_reconnect()
        self._pending.clear()
        ws = self._ws
        if ws is None:
            if self._connecting is not None:
                self._connecting.cancel()
            self._policy.on_closing()
            self._policy.on_close(1000)
            self._set_state(ConnectionState.CLOSED)
            return

        outbox = self._outbox
        if outbox is not None and not outbox.empty():
            # Let queued close/stop intents reach the server first
            try:
                await asyncio.wait_for(outbox.join(), timeout=DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug("Outbox for server %s not drained before close", self._server_id)

        self._policy.on_closing()
        self._set_state(ConnectionState.CLOSING)
        reader = self._reader_task
        try:
            await ws.close(code=1000)
        except Exception:
            logger.debug("Error closing socket for server %s", self._server_id, exc_info=True)
        if reader is not None and not reader.done():
            await asyncio.wait({reader}, timeout=1.0)
        if self._state is not ConnectionState.CLOSED:
            self._detach()
            self._handle_close(1000)
        logger.info("Disconnected from server %s", self._server_id)

    def note_heartbeat(self) -> None:
        """An inbound heartbeat proves the link is alive."""
        self._heartbeat_failures = 0

    # --- Opening ---

    async def _open(self) -> None:
        if self._state is ConnectionState.OPEN:
            return
        if self._connecting is None:
            self._connecting = asyncio.get_running_loop().create_task(self._do_open())
        await asyncio.shield(self._connecting)

    async def _do_open(self) -> None:
        self._policy.on_connecting()
        self._set_state(ConnectionState.CONNECTING)
        url = self._config.websocket_url(self._server_id, self._token, self._session_id)
        logger.info("Connecting to server %s", self._server_id)
        try:
            ws = await asyncio.wait_for(
                self._connector(url), timeout=self._config.connect_timeout
            )
        except asyncio.CancelledError:
            self._connecting = None
            raise
        except Exception as e:
            self._connecting = None
            reason = str(e) or type(e).__name__
            logger.warning("Connection to server %s failed: %s", self._server_id, reason)
            self._handle_close(ABNORMAL_CLOSE_CODE)
            raise AgentConnectionError(
                f"Could not connect to server {self._server_id}: {reason}"
            ) from e
        self._connecting = None

        if self._user_closed:
            await self._close_quietly(ws, 1000)
            self._handle_close(1000)
            return

        self._ws = ws
        self._outbox = asyncio.Queue()
        self._heartbeat_failures = 0
        self._last_opened_at = time.time()
        self._policy.on_open()

        loop = asyncio.get_running_loop()
        self._reader_task = loop.create_task(self._read_loop(ws))
        self._writer_task = loop.create_task(self._write_loop(ws, self._outbox))
        self._heartbeat_task = loop.create_task(self._heartbeat_loop(ws))

        flushed = len(self._pending)
        while self._pending:
            self._outbox.put_nowait(self._pending.popleft())
        logger.info(
            "Connected to server %s (%d queued frame(s) flushed)",
            self._server_id,
            flushed,
        )
        self._set_state(ConnectionState.OPEN)

    # --- Socket tasks ---

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                self._dispatch(message)
        except ConnectionClosed:
            pass
        except Exception:
            logger.exception("Read loop failed for server %s", self._server_id)
        if ws is not self._ws:
            # Detached by a forced close or disconnect
            return
        code = getattr(ws, "close_code", None) or ABNORMAL_CLOSE_CODE
        self._detach()
        self._handle_close(code)

    async def _write_loop(self, ws: Any, outbox: asyncio.Queue[str]) -> None:
        while True:
            text = await outbox.get()
            try:
                await ws.send(text)
            except ConnectionClosed:
                logger.debug("Socket closed while writing to server %s", self._server_id)
                return
            except Exception:
                logger.warning(
                    "Dropping frame for server %s after send failure",
                    self._server_id,
                    exc_info=True,
                )
            finally:
                outbox.task_done()

    async def _heartbeat_loop(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            if ws is not self._ws:
                return
            try:
                await ws.send(encode_frame(heartbeat_frame()))
            except Exception as e:
                if self._record_heartbeat_failure(e):
                    return

    def _dispatch(self, message: str | bytes) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Message handler failed for server %s", self._server_id)

    # --- Heartbeat failure / forced reconnect ---

    def _record_heartbeat_failure(self, error: Exception) -> bool:
        """Count a failed heartbeat; returns True if it forced a reconnect."""
        self._heartbeat_failures += 1
        threshold = self._config.heartbeat_failure_threshold
        logger.warning(
            "Heartbeat to server %s failed (%d/%d): %s",
            self._server_id,
            self._heartbeat_failures,
            threshold,
            error,
        )
        if self._heartbeat_failures < threshold:
            return False
        self._force_reconnect()
        return True

    def _force_reconnect(self) -> None:
        # Bypasses _handle_close so the reader cannot schedule a second reconnect
        logger.warning("Heartbeat lost for server %s — forcing reconnect", self._server_id)
        ws = self._detach()
        self._heartbeat_failures = 0
        self._set_state(ConnectionState.CLOSED)
        if ws is not None:
            self._spawn(self._close_quietly(ws, HEARTBEAT_CLOSE_CODE))
        self._spawn(self._reconnect_now())

    async def _reconnect_now(self) -> None:
        try:
            await self.connect()
        except AgentConnectionError:
            # Backoff was scheduled by the failed open
            pass

    async def _close_quietly(self, ws: Any, code: int) -> None:
        try:
            await ws.close(code=code)
        except Exception:
            logger.debug("Error closing stale socket", exc_info=True)

    # --- Close handling / backoff ---

    def _handle_close(self, code: int) -> None:
        if self._user_closed:
            self._policy.on_closing()
            self._policy.on_close(code)
            self._set_state(ConnectionState.CLOSED)
            return

        should_reconnect = self._policy.on_close(code)
        self._set_state(ConnectionState.CLOSED)
        if not should_reconnect:
            logger.info("Server %s closed the connection (code %s)", self._server_id, code)
            return
        logger.warning(
            "Connection to server %s closed unexpectedly (code %s)", self._server_id, code
        )
        self._cancel_reconnect()
        self._reconnect_task = self._spawn(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        if self._guard.in_flight:
            logger.info(
                "File operation in flight — deferring reconnect to server %s",
                self._server_id,
            )
            while self._guard.in_flight:
                await asyncio.sleep(self._config.guard_poll_interval)
            self._policy.reset()

        delay = self._policy.next_delay()
        if delay is None:
            self._reconnect_task = None
            error = ReconnectExhaustedError(self._server_id, self._policy.max_attempts)
            logger.error("%s", error)
            self._notify(error)
            return

        self._notify(None)
        logger.info(
            "Reconnecting to server %s in %.1fs (attempt %d/%d)",
            self._server_id,
            delay,
            self._policy.attempt,
            self._policy.max_attempts,
        )
        await asyncio.sleep(delay)
        self._reconnect_task = None
        try:
            await self._open()
        except AgentConnectionError:
            pass

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # --- Internals ---

    def _detach(self) -> Any:
        """Drop the socket reference and stop its tasks; returns the socket."""
        ws = self._ws
        self._ws = None
        self._outbox = None
        current = asyncio.current_task()
        for task in (self._reader_task, self._writer_task, self._heartbeat_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._reader_task = None
        self._writer_task = None
        self._heartbeat_task = None
        return ws

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify(None)

    def _notify(self, error: Exception | None) -> None:
        snapshot = self.snapshot()
        for callback in list(self._listeners):
            try:
                callback(snapshot, error)
            except Exception:
                logger.exception("Connection listener failed for server %s", self._server_id)
