"""Cancellable one-shot timers on the running asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ScheduledTask:
    """A one-shot deferred callback that is idempotent to schedule.

    Calling ``schedule()`` while a run is already pending is a no-op, so
    callers never need their own "timer already armed" flag.  ``cancel()``
    is safe to call at any time.
    """

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self._delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> bool:
        """Arm the timer. Returns False if it was already pending."""
        if self._handle is not None:
            return False
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def reschedule(self) -> None:
        """Push the deadline out to a full delay from now, arming if idle."""
        self.cancel()
        self.schedule()

    def _fire(self) -> None:
        self._handle = None
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled callback failed")
