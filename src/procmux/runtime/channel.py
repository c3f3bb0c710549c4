"""Output channel: append-only buffer with subscriber fan-out and pull reads.

One OutputChannel exists per child output stream. The drainer appends raw
bytes as they are read; consumers either subscribe (push) or read (pull).
Both views share one buffer, guarded by one condition variable.

Delivery granularity:
- chunk mode (default): every increment is exactly one pipe read
- line mode: every increment is one complete ``\\n``-terminated line; a
  trailing partial line is held back until more data arrives or the channel
  closes, at which point it is delivered as-is
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator

__all__ = [
    "EOF",
    "OutputChannel",
    "Subscriber",
]

logger = logging.getLogger(__name__)

Subscriber = Callable[[bytes], None]


class _EndOfStream:
    """Sentinel returned by pull reads once a channel is closed and consumed."""

    _instance: _EndOfStream | None = None

    def __new__(cls) -> _EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EOF"

    def __bool__(self) -> bool:
        return False


EOF = _EndOfStream()


class OutputChannel:
    """Buffer and fan-out point for one output stream.

    Every mutation (append, close) and every registration (subscribe) runs
    under the same lock, so a subscriber sees the replay and then every later
    increment, with nothing delivered twice and nothing skipped.

    Attributes:
        name: Stream name, used in log messages ("stdout"/"stderr")
        line_buffered: Whether increments are whole lines
    """

    def __init__(self, name: str, line_buffered: bool = False) -> None:
        self.name = name
        self.line_buffered = line_buffered
        self._cond = threading.Condition(threading.RLock())
        self._increments: list[bytes] = []
        self._partial = b""
        self._subscribers: list[Subscriber] = []
        self._read_index = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the stream reached EOF (or failed)."""
        with self._cond:
            return self._closed

    def append(self, data: bytes) -> None:
        """Add freshly drained bytes and notify subscribers and readers."""
        if not data:
            return
        with self._cond:
            if self._closed:
                logger.debug(f"Dropping {len(data)} bytes appended to closed {self.name}")
                return
            for increment in self._split(data):
                self._publish(increment)
            self._cond.notify_all()

    def close(self) -> None:
        """Mark end of stream, flushing any held-back partial line. Idempotent."""
        with self._cond:
            if self._closed:
                return
            if self._partial:
                partial, self._partial = self._partial, b""
                self._publish(partial)
            self._closed = True
            self._cond.notify_all()
        logger.debug(f"Channel {self.name} closed")

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback for every increment.

        Anything produced before the call is replayed to ``callback`` as a
        single synchronous call first. If that replay raises, the exception
        propagates and the callback is not registered.

        Args:
            callback: Called with each increment (bytes)
        """
        with self._cond:
            snapshot = b"".join(self._increments)
            if snapshot:
                callback(snapshot)
            self._subscribers.append(callback)

    def read_chunk(self, timeout: float | None = None) -> bytes | _EndOfStream:
        """Blocking pull read.

        Chunk mode returns all unread bytes at once; line mode returns the next
        line. Each byte is returned by exactly one read.

        Args:
            timeout: Seconds to wait for data (None = wait forever)

        Returns:
            The data, EOF once the channel is closed and fully read, or b""
            if the timeout elapsed with nothing to read
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._read_index < len(self._increments) or self._closed,
                timeout=timeout,
            )
            if self._read_index < len(self._increments):
                if self.line_buffered:
                    chunk = self._increments[self._read_index]
                    self._read_index += 1
                else:
                    chunk = b"".join(self._increments[self._read_index:])
                    self._read_index = len(self._increments)
                return chunk
            if self._closed:
                return EOF
            return b""

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield pull reads until EOF."""
        while True:
            chunk = self.read_chunk()
            if chunk is EOF:
                return
            yield chunk

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the channel is closed. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._closed, timeout=timeout)

    def getvalue(self) -> bytes:
        """Everything captured so far, including a held-back partial line."""
        with self._cond:
            return b"".join(self._increments) + self._partial

    def _split(self, data: bytes) -> list[bytes]:
        if not self.line_buffered:
            return [data]
        lines = (self._partial + data).split(b"\n")
        self._partial = lines.pop()
        return [line + b"\n" for line in lines]

    def _publish(self, increment: bytes) -> None:
        # Caller holds self._cond
        self._increments.append(increment)
        for callback in list(self._subscribers):
            try:
                callback(increment)
            except Exception:
                logger.warning(
                    f"Subscriber {callback!r} on {self.name} raised; continuing",
                    exc_info=True,
                )
