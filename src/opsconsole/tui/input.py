"""Raw-mode keyboard input delivered to the asyncio loop."""

from __future__ import annotations

import asyncio
import os
import sys
import termios
import tty
from collections.abc import Callable
from types import TracebackType

# Ctrl+] detaches from an interactive shell, as in telnet
DETACH_KEY = "\x1d"


class RawInput:
    """Context manager that puts stdin into raw mode and streams keystrokes.

    Bytes are read with ``os.read`` on the raw descriptor from a loop
    reader callback, so escape sequences reach the remote shell intact.
    The detach key is intercepted and never forwarded.

    Usage::

        with RawInput(loop, on_keys=send, on_detach=stop):
            await stopped.wait()
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_keys: Callable[[str], None],
        on_detach: Callable[[], None],
        fd: int | None = None,
    ) -> None:
        self._loop = loop
        self._on_keys = on_keys
        self._on_detach = on_detach
        self._fd: int = sys.stdin.fileno() if fd is None else fd
        self._old_settings: list | None = None

    def __enter__(self) -> RawInput:
        self._old_settings = termios.tcgetattr(self._fd)
        tty.setraw(self._fd)
        self._loop.add_reader(self._fd, self._on_readable)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._loop.remove_reader(self._fd)
        if self._old_settings is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._old_settings)

    def _on_readable(self) -> None:
        data = os.read(self._fd, 1024)
        if not data:
            self._on_detach()
            return
        self.feed(data.decode("utf-8", errors="replace"))

    def feed(self, text: str) -> None:
        """Forward typed text, stopping at the detach key."""
        head, sep, _rest = text.partition(DETACH_KEY)
        if head:
            self._on_keys(head)
        if sep:
            self._on_detach()


def terminal_size(fd: int | None = None) -> tuple[int, int]:
    """Return ``(cols, rows)`` of the controlling terminal, 80x24 if unknown."""
    try:
        size = os.get_terminal_size(sys.stdout.fileno() if fd is None else fd)
    except OSError:
        return 80, 24
    return size.columns, size.lines
