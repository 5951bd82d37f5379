"""Tests for the connection manager against an in-memory socket."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock, patch

import pytest

from opsconsole.connection import (
    ConnectionManager,
    ConnectionState,
    FileOperationGuard,
    ReconnectPhase,
)
from opsconsole.connection.manager import HEARTBEAT_CLOSE_CODE
from opsconsole.errors import AgentConnectionError, ReconnectExhaustedError


def run_async(coro):
    return asyncio.run(coro)


async def eventually(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def _types(ws) -> list[str]:
    return [json.loads(text)["type"] for text in ws.sent]


class TestConnect:
    def test_connect_opens_once(self, fast_config, connector):
        async def scenario():
            mgr = ConnectionManager("7", fast_config, token="tok", connector=connector)
            await mgr.connect()
            assert mgr.is_open
            await mgr.connect()
            assert connector.calls == 1
            assert connector.urls == ["ws://127.0.0.1:8080/api/servers/7/ws?token=tok"]
            assert mgr.snapshot().last_opened_at is not None
            await mgr.disconnect()

        run_async(scenario())

    def test_session_id_in_url(self, fast_config, connector):
        async def scenario():
            mgr = ConnectionManager("7", fast_config, token="t", session_id="term", connector=connector)
            await mgr.connect()
            await mgr.disconnect()

        run_async(scenario())
        assert connector.urls[0].endswith("?token=t&session=term")

    def test_concurrent_connects_share_one_attempt(self, fast_config, connector):
        connector.delay = 0.02

        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            await asyncio.gather(mgr.connect(), mgr.connect(), mgr.connect())
            assert mgr.is_open
            await mgr.disconnect()

        run_async(scenario())
        assert connector.calls == 1

    def test_listeners_see_transitions(self, fast_config, connector):
        states: list[ConnectionState] = []

        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            mgr.add_listener(lambda conn, _err: states.append(conn.state))
            await mgr.connect()
            await mgr.disconnect()

        run_async(scenario())
        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.OPEN,
            ConnectionState.CLOSING,
            ConnectionState.CLOSED,
        ]

    def test_failed_connect_raises_and_backs_off(self, fast_config, connector):
        connector.failures = 1

        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            with pytest.raises(AgentConnectionError):
                await mgr.connect()
            await eventually(lambda: mgr.is_open)
            await mgr.disconnect()

        run_async(scenario())
        assert connector.calls == 2

    def test_connect_timeout(self, fast_config, connector):
        connector.delay = 1.0
        config = replace(fast_config, connect_timeout=0.02, max_reconnect_attempts=0)

        async def scenario():
            mgr = ConnectionManager("1", config, connector=connector)
            with pytest.raises(AgentConnectionError):
                await mgr.connect()
            await eventually(lambda: mgr.phase is ReconnectPhase.GAVE_UP)
            assert mgr.state is ConnectionState.CLOSED

        run_async(scenario())


class TestSend:
    def test_pending_frames_flush_in_order(self, fast_config, connector):
        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            assert mgr.send({"type": "a"}) is False
            assert mgr.send({"type": "b"}) is False
            assert mgr.pending_count == 2
            await mgr.connect()
            assert mgr.pending_count == 0
            assert mgr.send({"type": "c"}) is True
            await eventually(lambda: len(connector.last.sent) == 3)
            assert _types(connector.last) == ["a", "b", "c"]
            await mgr.disconnect()

        run_async(scenario())

    def test_pending_queue_drops_oldest(self, fast_config, connector):
        config = replace(fast_config, pending_limit=2)

        async def scenario():
            mgr = ConnectionManager("1", config, connector=connector)
            for name in ("a", "b", "c"):
                mgr.send({"type": name})
            assert mgr.pending_count == 2
            await mgr.connect()
            await eventually(lambda: len(connector.last.sent) == 2)
            assert _types(connector.last) == ["b", "c"]
            await mgr.disconnect()

        run_async(scenario())

    def test_inbound_messages_reach_handler(self, fast_config, connector):
        received: list[str] = []

        def handler(message):
            if message == "bad":
                raise RuntimeError("handler bug")
            received.append(message)

        async def scenario():
            mgr = ConnectionManager("1", fast_config, on_message=handler, connector=connector)
            await mgr.connect()
            connector.last.push("bad")
            connector.last.push('{"type":"welcome"}')
            await eventually(lambda: received == ['{"type":"welcome"}'])
            assert mgr.is_open
            await mgr.disconnect()

        run_async(scenario())


class TestClose:
    def test_abnormal_close_reconnects(self, fast_config, connector):
        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            await mgr.connect()
            connector.last.drop(1006)
            await eventually(lambda: connector.calls == 2 and mgr.is_open)
            assert mgr.reconnect_attempt == 0
            await mgr.disconnect()

        run_async(scenario())

    @pytest.mark.parametrize("code", [1000, 1001])
    def test_normal_close_stays_closed(self, fast_config, connector, code):
        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            await mgr.connect()
            connector.last.drop(code)
            await eventually(lambda: mgr.state is ConnectionState.CLOSED)
            await asyncio.sleep(0.05)
            assert connector.calls == 1
            assert mgr.phase is ReconnectPhase.DISCONNECTED

        run_async(scenario())

    def test_gives_up_after_max_attempts(self, fast_config, connector):
        errors: list[Exception] = []

        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            mgr.add_listener(lambda _conn, err: err is not None and errors.append(err))
            await mgr.connect()
            connector.always_fail = True
            connector.last.drop()
            await eventually(lambda: mgr.phase is ReconnectPhase.GAVE_UP)
            assert mgr.snapshot().gave_up
            await asyncio.sleep(0.05)
            assert connector.calls == 1 + fast_config.max_reconnect_attempts

            # A manual connect starts a fresh round
            connector.always_fail = False
            await mgr.connect()
            assert mgr.is_open
            await mgr.disconnect()

        run_async(scenario())
        assert len(errors) == 1
        assert isinstance(errors[0], ReconnectExhaustedError)
        assert errors[0].attempts == fast_config.max_reconnect_attempts

    def test_disconnect_drains_and_never_reconnects(self, fast_config, connector):
        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            await mgr.connect()
            ws = connector.last
            mgr.send({"type": "bye"})
            await mgr.disconnect()
            assert ws.closed
            assert ws.close_code == 1000
            assert _types(ws) == ["bye"]
            await asyncio.sleep(0.05)
            assert connector.calls == 1
            assert mgr.state is ConnectionState.CLOSED
            assert mgr.phase is ReconnectPhase.DISCONNECTED

        run_async(scenario())

    def test_disconnect_discards_pending(self, fast_config, connector):
        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector)
            mgr.send({"type": "a"})
            await mgr.disconnect()
            assert mgr.pending_count == 0
            assert mgr.state is ConnectionState.CLOSED

        run_async(scenario())
        assert connector.calls == 0

    def test_guard_defers_reconnect(self, fast_config, connector):
        guard = FileOperationGuard()

        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector, guard=guard)
            await mgr.connect()
            guard.begin()
            connector.last.drop()
            await asyncio.sleep(0.05)
            assert connector.calls == 1
            assert mgr.state is ConnectionState.CLOSED
            guard.end()
            await eventually(lambda: mgr.is_open)
            assert connector.calls == 2
            await mgr.disconnect()

        run_async(scenario())

    def test_cleared_guard_restarts_attempt_count(self, fast_config, connector):
        guard = FileOperationGuard()
        backoffs: list[int] = []

        def on_change(conn, _err):
            if conn.phase is ReconnectPhase.BACKOFF:
                backoffs.append(conn.reconnect_attempt)

        async def scenario():
            mgr = ConnectionManager("1", fast_config, connector=connector, guard=guard)
            mgr.add_listener(on_change)
            await mgr.connect()
            connector.always_fail = True
            connector.last.drop()
            await eventually(lambda: connector.calls >= 2)
            guard.begin()
            await asyncio.sleep(0.08)
            calls = connector.calls
            assert mgr.reconnect_attempt >= 1
            assert mgr.snapshot().reconnecting
            await asyncio.sleep(0.05)
            assert connector.calls == calls

            connector.always_fail = False
            backoffs.clear()
            guard.end()
            await eventually(lambda: mgr.is_open)
            assert mgr.reconnect_attempt == 0
            await mgr.disconnect()

        run_async(scenario())
        assert backoffs == [1]


class TestHeartbeat:
    def test_heartbeats_are_sent(self, fast_config, connector):
        config = replace(fast_config, heartbeat_interval=0.01)

        async def scenario():
            mgr = ConnectionManager("1", config, connector=connector)
            await mgr.connect()
            await eventually(lambda: "heartbeat" in _types(connector.last))
            await mgr.disconnect()

        run_async(scenario())

    def test_inbound_heartbeat_resets_failures(self, fast_config, connector):
        config = replace(fast_config, heartbeat_interval=0.01, heartbeat_failure_threshold=100)

        async def scenario():
            mgr = ConnectionManager("1", config, connector=connector)
            await mgr.connect()
            connector.last.fail_heartbeats = True
            await eventually(lambda: mgr.heartbeat_failure_count >= 2)
            mgr.note_heartbeat()
            assert mgr.heartbeat_failure_count == 0
            assert mgr.is_open
            await mgr.disconnect()

        run_async(scenario())

    def test_failures_force_exactly_one_reconnect(self, fast_config, connector):
        config = replace(fast_config, heartbeat_interval=0.01, heartbeat_failure_threshold=2)

        async def scenario():
            mgr = ConnectionManager("1", config, connector=connector)
            await mgr.connect()
            ws = connector.last
            with patch.object(mgr, "connect", new=AsyncMock()) as mock_connect:
                ws.fail_heartbeats = True
                await eventually(lambda: mock_connect.await_count >= 1)
                await asyncio.sleep(0.05)
            assert mock_connect.await_count == 1
            assert ws.closed
            assert ws.close_code == HEARTBEAT_CLOSE_CODE
            assert mgr.state is ConnectionState.CLOSED
            assert mgr.heartbeat_failure_count == 0

        run_async(scenario())

    def test_forced_reconnect_reopens(self, fast_config, connector):
        config = replace(fast_config, heartbeat_interval=0.01, heartbeat_failure_threshold=1)

        async def scenario():
            mgr = ConnectionManager("1", config, connector=connector)
            await mgr.connect()
            connector.last.fail_heartbeats = True
            await eventually(lambda: connector.calls == 2 and mgr.is_open)
            await mgr.disconnect()

        run_async(scenario())
