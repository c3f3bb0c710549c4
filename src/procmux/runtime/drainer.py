"""Stream drainer: keeps a child's output pipes empty.

A child that fills one pipe buffer blocks on write until somebody reads that
pipe. Reading stdout to completion before stderr (or the reverse) therefore
deadlocks as soon as the child writes enough to the other stream. The drainer
reads whichever pipe is ready, for as long as either is open, independently of
whether anybody consumes the data.

Key design points:
- POSIX: one thread, one selectors readiness wait over both descriptors
- Windows: selectors cannot wait on pipes, so one blocking reader per pipe
- An OS error on one pipe closes only that channel
- Every channel is closed when draining ends, whatever the reason
"""

from __future__ import annotations

import logging
import os
import selectors
import sys
import threading
from collections.abc import Mapping

from .channel import OutputChannel

__all__ = ["StreamDrainer"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


class StreamDrainer:
    """Background reader for a set of pipe descriptors.

    Example:
        drainer = StreamDrainer({out_fd: stdout_channel, err_fd: stderr_channel})
        drainer.start()
        ...
        drainer.join()  # both channels are closed afterwards
    """

    def __init__(
        self,
        channels: Mapping[int, OutputChannel],
        read_size: int = 65536,
        name: str = "procmux-drain",
    ) -> None:
        """Initialise the drainer.

        Args:
            channels: Pipe read descriptor -> channel receiving its data
            read_size: Maximum bytes per read
            name: Thread name prefix
        """
        self._channels = dict(channels)
        self._read_size = read_size
        self._name = name
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        """Start draining in background thread(s)."""
        if self._threads:
            raise RuntimeError("StreamDrainer already started")

        if IS_WINDOWS:
            for fd, channel in self._channels.items():
                self._threads.append(
                    threading.Thread(
                        target=self._drain_blocking,
                        args=(fd, channel),
                        name=f"{self._name}-{channel.name}",
                        daemon=True,
                    )
                )
        else:
            self._threads.append(
                threading.Thread(target=self._drain_multiplexed, name=self._name, daemon=True)
            )

        for thread in self._threads:
            thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for draining to finish. Returns False if still running after timeout."""
        for thread in self._threads:
            thread.join(timeout)
        return not self.is_alive()

    def is_alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _drain_multiplexed(self) -> None:
        """Readiness loop over all open descriptors."""
        try:
            with selectors.DefaultSelector() as selector:
                for fd, channel in self._channels.items():
                    os.set_blocking(fd, False)
                    selector.register(fd, selectors.EVENT_READ, channel)

                while selector.get_map():
                    for key, _ in selector.select():
                        channel: OutputChannel = key.data
                        try:
                            data = os.read(key.fd, self._read_size)
                        except (BlockingIOError, InterruptedError):
                            # Readiness without data, try again on next wakeup
                            continue
                        except OSError as e:
                            logger.warning(f"Read error on {channel.name}, closing channel: {e}")
                            selector.unregister(key.fd)
                            channel.close()
                            continue

                        if not data:
                            selector.unregister(key.fd)
                            channel.close()
                            continue

                        channel.append(data)
        finally:
            self._close_all()

    def _drain_blocking(self, fd: int, channel: OutputChannel) -> None:
        """Plain blocking read loop for a single descriptor."""
        try:
            while True:
                try:
                    data = os.read(fd, self._read_size)
                except InterruptedError:
                    continue
                except OSError as e:
                    logger.warning(f"Read error on {channel.name}, closing channel: {e}")
                    break
                if not data:
                    break
                channel.append(data)
        finally:
            channel.close()

    def _close_all(self) -> None:
        for channel in self._channels.values():
            channel.close()
