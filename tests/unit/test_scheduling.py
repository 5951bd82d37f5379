"""Tests for the one-shot scheduled task."""

from __future__ import annotations

import asyncio

import pytest

from opsconsole.scheduling import ScheduledTask


def run_async(coro):
    return asyncio.run(coro)


def test_schedule_is_idempotent():
    calls: list[int] = []

    async def scenario():
        task = ScheduledTask(0.01, lambda: calls.append(1))
        assert task.schedule() is True
        assert task.schedule() is False
        assert task.pending
        await asyncio.sleep(0.05)
        assert not task.pending

    run_async(scenario())
    assert calls == [1]


def test_reschedule_after_fire():
    calls: list[int] = []

    async def scenario():
        task = ScheduledTask(0, lambda: calls.append(1))
        task.schedule()
        await asyncio.sleep(0.01)
        task.schedule()
        await asyncio.sleep(0.01)

    run_async(scenario())
    assert calls == [1, 1]


def test_cancel():
    calls: list[int] = []

    async def scenario():
        task = ScheduledTask(0.01, lambda: calls.append(1))
        task.schedule()
        task.cancel()
        task.cancel()
        await asyncio.sleep(0.03)

    run_async(scenario())
    assert calls == []


def test_reschedule_pushes_deadline_out():
    calls: list[float] = []

    async def scenario():
        loop = asyncio.get_running_loop()
        task = ScheduledTask(0.1, lambda: calls.append(loop.time()))
        started = loop.time()
        task.schedule()
        for _ in range(4):
            await asyncio.sleep(0.02)
            task.reschedule()
        assert calls == []
        await asyncio.sleep(0.2)
        return started

    started = run_async(scenario())
    assert len(calls) == 1
    assert calls[0] - started >= 0.17


def test_reschedule_arms_idle_task():
    calls: list[int] = []

    async def scenario():
        task = ScheduledTask(0, lambda: calls.append(1))
        task.reschedule()
        assert task.pending
        await asyncio.sleep(0.01)

    run_async(scenario())
    assert calls == [1]


def test_callback_errors_are_contained():
    def boom():
        raise RuntimeError("boom")

    async def scenario():
        task = ScheduledTask(0, boom)
        task.schedule()
        await asyncio.sleep(0.01)
        assert not task.pending
        assert task.schedule() is True
        task.cancel()

    run_async(scenario())


def test_negative_delay():
    with pytest.raises(ValueError):
        ScheduledTask(-1, lambda: None)
