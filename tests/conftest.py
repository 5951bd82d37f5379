"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from opsconsole.config import ConsoleConfig

_CLOSED = object()


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.closed = False
        self.fail_heartbeats = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, message: str | bytes) -> None:
        """Deliver an inbound message to the reader."""
        self._inbox.put_nowait(message)

    def drop(self, code: int = 1006) -> None:
        """Simulate the server side going away."""
        self.close_code = code
        self._inbox.put_nowait(_CLOSED)

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        if self.fail_heartbeats and '"heartbeat"' in text:
            raise ConnectionError("heartbeat write failed")
        self.sent.append(text)

    async def close(self, code: int = 1000) -> None:
        if self.close_code is None:
            self.close_code = code
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> Any:
        message = await self._inbox.get()
        if message is _CLOSED:
            raise StopAsyncIteration
        return message


class FakeConnector:
    """Connector that hands out FakeSockets and records the URLs it saw."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self.failures = 0
        self.always_fail = False
        self.delay = 0.0

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail or self.failures > 0:
            self.failures = max(0, self.failures - 1)
            raise OSError("connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws


class FakeConnection:
    """Minimal frame sender for exercising the registries in isolation."""

    def __init__(self, is_open: bool = True) -> None:
        self.is_open = is_open
        self.sent: list[dict[str, Any]] = []
        self.connect_calls = 0
        self.connect_error: Exception | None = None
        self.connect_delay = 0.0

    def send(self, frame: dict[str, Any]) -> bool:
        self.sent.append(frame)
        return self.is_open

    async def connect(self, token: str | None = None) -> None:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.is_open = True

    def sent_types(self) -> list[str]:
        return [f["payload"].get("type", f["payload"].get("action")) for f in self.sent]


@pytest.fixture
def fast_config(tmp_path: Path) -> ConsoleConfig:
    """Config with every interval shrunk so tests finish quickly."""
    return ConsoleConfig(
        config_dir=tmp_path,
        connect_timeout=0.5,
        heartbeat_interval=5.0,
        heartbeat_failure_threshold=3,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        max_reconnect_attempts=3,
        guard_poll_interval=0.01,
        resize_debounce=0.01,
        flush_interval=0.01,
        stream_start_timeout=0.1,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()
