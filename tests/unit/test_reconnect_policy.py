"""Tests for the reconnect backoff state machine."""

from __future__ import annotations

import pytest

from opsconsole.connection.models import ReconnectPhase
from opsconsole.connection.policy import ReconnectPolicy


def test_linear_backoff_capped():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=3.0, max_attempts=5)
    delays = [policy.next_delay() for _ in range(5)]
    assert delays == [1.0, 2.0, 3.0, 3.0, 3.0]
    assert policy.phase is ReconnectPhase.BACKOFF


def test_gives_up_after_max_attempts():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=30.0, max_attempts=2)
    policy.on_close(1006)
    assert policy.next_delay() == 1.0
    assert policy.next_delay() == 2.0
    assert policy.next_delay() is None
    assert policy.gave_up
    assert policy.attempt == 2


def test_zero_attempts_gives_up_immediately():
    policy = ReconnectPolicy(max_attempts=0)
    assert policy.next_delay() is None
    assert policy.gave_up


def test_open_resets_attempts():
    policy = ReconnectPolicy()
    policy.next_delay()
    policy.next_delay()
    policy.on_connecting()
    policy.on_open()
    assert policy.attempt == 0
    assert policy.phase is ReconnectPhase.OPEN


@pytest.mark.parametrize("code", [1000, 1001])
def test_normal_close_does_not_reconnect(code):
    policy = ReconnectPolicy()
    policy.on_open()
    assert policy.on_close(code) is False
    assert policy.phase is ReconnectPhase.DISCONNECTED


@pytest.mark.parametrize("code", [1006, 1011, 4000, None])
def test_abnormal_close_reconnects(code):
    policy = ReconnectPolicy()
    policy.on_open()
    assert policy.on_close(code) is True
    assert policy.phase is ReconnectPhase.UNEXPECTEDLY_CLOSED


def test_closing_never_reconnects():
    policy = ReconnectPolicy()
    policy.on_open()
    policy.on_closing()
    assert policy.on_close(1006) is False
    assert policy.phase is ReconnectPhase.DISCONNECTED


def test_gave_up_is_terminal_until_reset():
    policy = ReconnectPolicy(max_attempts=0)
    policy.next_delay()
    assert policy.on_close(1006) is False
    with pytest.raises(RuntimeError):
        policy.on_connecting()

    policy.reset()
    assert policy.phase is ReconnectPhase.DISCONNECTED
    policy.on_connecting()
    assert policy.phase is ReconnectPhase.CONNECTING
