"""Reconnect policy — the backoff state machine for one connection."""

from __future__ import annotations

import logging

from opsconsole.connection.models import NORMAL_CLOSE_CODES, ReconnectPhase

logger = logging.getLogger(__name__)


class ReconnectPolicy:
    """Linear backoff capped at ``max_delay``, giving up after ``max_attempts``.

    ``attempt`` counts reconnects handed out since the last successful open.
    GAVE_UP is terminal until ``reset()`` is called for a manual retry.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.phase = ReconnectPhase.DISCONNECTED
        self.attempt = 0

    @property
    def gave_up(self) -> bool:
        return self.phase is ReconnectPhase.GAVE_UP

    def on_connecting(self) -> None:
        if self.phase is ReconnectPhase.GAVE_UP:
            raise RuntimeError("Reconnect policy gave up — call reset() first")
        self.phase = ReconnectPhase.CONNECTING

    def on_open(self) -> None:
        self.phase = ReconnectPhase.OPEN
        self.attempt = 0

    def on_closing(self) -> None:
        self.phase = ReconnectPhase.CLOSING

    def on_close(self, code: int | None) -> bool:
        """Record a close; returns True when a reconnect should follow."""
        if self.phase is ReconnectPhase.GAVE_UP:
            return False
        if self.phase is ReconnectPhase.CLOSING or code in NORMAL_CLOSE_CODES:
            self.phase = ReconnectPhase.DISCONNECTED
            return False
        self.phase = ReconnectPhase.UNEXPECTEDLY_CLOSED
        return True

    def next_delay(self) -> float | None:
        """Advance to BACKOFF and return the wait, or None once exhausted."""
        if self.attempt >= self.max_attempts:
            self.phase = ReconnectPhase.GAVE_UP
            logger.warning("Giving up after %d reconnect attempt(s)", self.attempt)
            return None
        self.attempt += 1
        self.phase = ReconnectPhase.BACKOFF
        return min(self.attempt * self.base_delay, self.max_delay)

    def reset(self) -> None:
        """Clear the attempt counter (manual retry or a cleared file guard)."""
        self.attempt = 0
        if self.phase is ReconnectPhase.GAVE_UP:
            self.phase = ReconnectPhase.DISCONNECTED
