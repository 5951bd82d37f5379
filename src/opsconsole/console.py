"""Per-server console wiring and the hub that keeps one console per server."""

from __future__ import annotations

import logging

from opsconsole.config import ConsoleConfig
from opsconsole.connection.guard import FileOperationGuard
from opsconsole.connection.manager import ConnectionManager, Connector
from opsconsole.connection.models import Connection, ConnectionState
from opsconsole.router import FrameRouter, MonitorSink
from opsconsole.server_info import ServerInfo
from opsconsole.session.registry import SessionRegistry
from opsconsole.streams.registry import StreamRegistry

logger = logging.getLogger(__name__)


class ServerConsole:
    """Everything multiplexed over one server's WebSocket.

    Wires a ConnectionManager to a FrameRouter feeding the session and
    stream registries, and unbinds both registries when the link drops.
    """

    def __init__(
        self,
        server_id: str | int,
        config: ConsoleConfig,
        token: str | None = None,
        session_id: str | None = None,
        connector: Connector | None = None,
        guard: FileOperationGuard | None = None,
        on_monitor: MonitorSink | None = None,
    ) -> None:
        self.server_id = str(server_id)
        self.config = config
        self.connection = ConnectionManager(
            self.server_id,
            config,
            token=token if token is not None else config.token,
            session_id=session_id,
            connector=connector,
            guard=guard,
        )
        self.sessions = SessionRegistry(
            self.connection, resize_debounce=config.resize_debounce
        )
        self.streams = StreamRegistry(
            self.connection,
            max_lines=config.log_max_lines,
            flush_interval=config.flush_interval,
            start_timeout=config.stream_start_timeout,
            autoscroll_threshold=config.autoscroll_threshold,
        )
        self.server_info = ServerInfo(server_id=self.server_id)
        self.router = FrameRouter(
            self.sessions,
            self.streams,
            self.server_info,
            on_heartbeat=self.connection.note_heartbeat,
            on_monitor=on_monitor,
        )
        self.connection.set_message_handler(self.router.handle)
        self.connection.add_listener(self._on_connection_change)
        self._was_open = False

    @property
    def file_guard(self) -> FileOperationGuard:
        """Hold this around a file save to keep reconnects from interleaving."""
        return self.connection.guard

    async def connect(self, token: str | None = None) -> None:
        await self.connection.connect(token)

    async def close(self) -> None:
        """Tear down sessions and streams, then disconnect."""
        self.streams.close_all()
        self.sessions.close_all()
        await self.connection.disconnect()

    def _on_connection_change(self, conn: Connection, error: Exception | None) -> None:
        if conn.state is ConnectionState.OPEN:
            self._was_open = True
            return
        if self._was_open and conn.state in (
            ConnectionState.CLOSED,
            ConnectionState.CLOSING,
        ):
            self._was_open = False
            logger.info("Server %s link down — unbinding sessions and streams", self.server_id)
            self.sessions.connection_lost()
            self.streams.connection_lost()


class ConsoleHub:
    """Keeps at most one live ServerConsole per server id."""

    def __init__(self, config: ConsoleConfig, connector: Connector | None = None) -> None:
        self._config = config
        self._connector = connector
        self._consoles: dict[str, ServerConsole] = {}

    def get(self, server_id: str | int) -> ServerConsole | None:
        return self._consoles.get(str(server_id))

    def console(self, server_id: str | int, token: str | None = None) -> ServerConsole:
        """Return the server's console, creating it on first use."""
        key = str(server_id)
        console = self._consoles.get(key)
        if console is None:
            console = ServerConsole(
                key, self._config, token=token, connector=self._connector
            )
            self._consoles[key] = console
        return console

    async def connect(self, server_id: str | int, token: str | None = None) -> ServerConsole:
        console = self.console(server_id, token)
        await console.connect(token)
        return console

    async def release(self, server_id: str | int) -> None:
        console = self._consoles.pop(str(server_id), None)
        if console is not None:
            await console.close()

    async def close_all(self) -> None:
        for server_id in list(self._consoles):
            await self.release(server_id)
