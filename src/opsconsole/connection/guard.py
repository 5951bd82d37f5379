"""In-flight file operation flag consulted before reconnecting."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager


class FileOperationGuard:
    """Counts file saves that are waiting for their response.

    While any save is in flight, an unexpected close postpones the reconnect
    so a new handshake never interleaves with the pending write.
    """

    def __init__(self) -> None:
        self._in_flight = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    def begin(self) -> None:
        self._in_flight += 1

    def end(self) -> None:
        if self._in_flight == 0:
            raise RuntimeError("FileOperationGuard.end() without begin()")
        self._in_flight -= 1

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Mark a file operation in flight for the duration of the block."""
        self.begin()
        try:
            yield
        finally:
            self.end()
