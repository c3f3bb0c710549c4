"""Process handle and result.

A ProcessHandle is one running (or finished) child. It owns the drainer for the
child's lifetime and exposes three ways to consume output:
- subscribe: callbacks fed with every increment (replay first, then live)
- pull: blocking reads of the next chunk/line
- result: the full capture once the process exited and both pipes hit EOF
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Iterator

import anyio.to_thread

from ..errors import InvalidArgument
from .channel import EOF, OutputChannel, Subscriber, _EndOfStream
from .drainer import StreamDrainer

__all__ = [
    "EOF",
    "ProcessHandle",
    "ProcessResult",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    """Immutable snapshot of a finished process.

    Attributes:
        stdout_bytes: Everything the child wrote to stdout
        stderr_bytes: Everything the child wrote to stderr
        exit_code: Exit status; 128 + N when killed by signal N
        pid: Process id of the child
        encoding: Codec used by the ``stdout``/``stderr`` text views
    """

    stdout_bytes: bytes
    stderr_bytes: bytes
    exit_code: int
    pid: int
    encoding: str = "utf-8"

    @property
    def stdout(self) -> str:
        return self.stdout_bytes.decode(self.encoding, errors="replace")

    @property
    def stderr(self) -> str:
        return self.stderr_bytes.decode(self.encoding, errors="replace")

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def normalize_exit_code(returncode: int) -> int:
    """Map Popen's negative "killed by signal" codes to the shell's 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class ProcessHandle:
    """Handle on a launched child process.

    Created by ``launch()``; not reusable. Output on both channels is delivered
    either as raw chunks (one per pipe read) or as whole lines, depending on
    ``line_buffered`` at launch. Non-zero exits never raise here; inspect
    ``ProcessResult.exit_code``.

    Example:
        with launch(["make", "test"]) as handle:
            handle.subscribe_stdout(lambda chunk: print(chunk.decode(), end=""))
            result = handle.await_result()
    """

    def __init__(
        self,
        process: subprocess.Popen,
        argv: list[str],
        stdout: OutputChannel,
        stderr: OutputChannel,
        drainer: StreamDrainer,
        encoding: str = "utf-8",
    ) -> None:
        self._process = process
        self.argv = argv
        self.stdout = stdout
        self.stderr = stderr
        self._drainer = drainer
        self._encoding = encoding

        self._stdin_lock = threading.Lock()
        self._stdin_closed = process.stdin is None
        self._feeder: threading.Thread | None = None

        self._result_lock = threading.Lock()
        self._result: ProcessResult | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def line_buffered(self) -> bool:
        return self.stdout.line_buffered

    @property
    def encoding(self) -> str:
        return self._encoding

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, argv={self.argv!r})"

    def __enter__(self) -> ProcessHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Wait for the child on exit, also when the body raised.

        The body's exception propagates only after the child has exited and
        both pipes are drained. Nothing is killed here, so a child that never
        exits keeps the block from being left.
        """
        self.await_result()

    # =========================================================================
    # Stdin
    # =========================================================================

    def write_stdin(self, data: bytes | str) -> None:
        """Write to the child's stdin.

        Raises:
            InvalidArgument: stdin was already closed
            BrokenPipeError: the child no longer reads its stdin
        """
        if isinstance(data, str):
            data = data.encode(self._encoding)
        with self._stdin_lock:
            if self._stdin_closed:
                raise InvalidArgument(f"stdin of pid={self.pid} is closed")
            stream = self._process.stdin
            assert stream is not None
            _write_all(stream, data)

    def close_stdin(self) -> None:
        """Close the child's stdin. Idempotent."""
        with self._stdin_lock:
            if self._stdin_closed:
                return
            self._stdin_closed = True
            stream = self._process.stdin
            assert stream is not None
            try:
                stream.close()
            except BrokenPipeError:
                logger.debug(f"stdin of pid={self.pid} already broken on close")

    def feed_stdin(self, payload: bytes) -> None:
        """Write ``payload`` then close stdin, from a background thread."""
        if self._feeder is not None:
            raise RuntimeError("stdin payload already being fed")
        self._feeder = threading.Thread(
            target=self._feed,
            args=(payload,),
            name=f"procmux-stdin-{self.pid}",
            daemon=True,
        )
        self._feeder.start()

    def _feed(self, payload: bytes) -> None:
        try:
            self.write_stdin(payload)
        except BrokenPipeError:
            logger.debug(f"pid={self.pid} exited before reading all of stdin")
        except InvalidArgument:
            logger.debug(f"stdin of pid={self.pid} was closed before the payload was written")
        finally:
            self.close_stdin()

    # =========================================================================
    # Output consumption
    # =========================================================================

    def subscribe_stdout(self, callback: Subscriber) -> None:
        """Receive every stdout increment (buffered output is replayed first)."""
        self.stdout.subscribe(callback)

    def subscribe_stderr(self, callback: Subscriber) -> None:
        """Receive every stderr increment (buffered output is replayed first)."""
        self.stderr.subscribe(callback)

    def read_stdout_chunk(self, timeout: float | None = None) -> bytes | _EndOfStream:
        return self.stdout.read_chunk(timeout)

    def read_stderr_chunk(self, timeout: float | None = None) -> bytes | _EndOfStream:
        return self.stderr.read_chunk(timeout)

    def iter_stdout(self) -> Iterator[bytes]:
        return self.stdout.iter_chunks()

    def iter_stderr(self) -> Iterator[bytes]:
        return self.stderr.iter_chunks()

    # =========================================================================
    # Completion
    # =========================================================================

    def poll(self) -> int | None:
        """Exit code if the child has exited, else None. Never blocks."""
        returncode = self._process.poll()
        if returncode is None:
            return None
        return normalize_exit_code(returncode)

    def await_result(self) -> ProcessResult:
        """Wait for exit and full drain, then return the (cached) result.

        Closes stdin first, since most programs only finish once their input
        ends. Process exit and EOF on the pipes may happen in either order;
        the result is built only after both.
        """
        with self._result_lock:
            if self._result is not None:
                return self._result

            if self._feeder is not None:
                self._feeder.join()
            self.close_stdin()

            returncode = self._process.wait()
            self._drainer.join()
            self._close_pipes()

            self._result = ProcessResult(
                stdout_bytes=self.stdout.getvalue(),
                stderr_bytes=self.stderr.getvalue(),
                exit_code=normalize_exit_code(returncode),
                pid=self.pid,
                encoding=self._encoding,
            )
            logger.debug(
                f"Subprocess completed pid={self.pid} "
                f"exit_code={self._result.exit_code}"
            )
            return self._result

    async def await_result_async(self) -> ProcessResult:
        """Coroutine flavour of await_result; waits on a worker thread."""
        return await anyio.to_thread.run_sync(self.await_result)

    def _close_pipes(self) -> None:
        for stream in (self._process.stdout, self._process.stderr):
            if stream is not None and not stream.closed:
                stream.close()


def _write_all(stream: IO[bytes], data: bytes) -> None:
    """Write every byte; unbuffered pipes may accept a write only partially."""
    view = memoryview(data)
    while view:
        written = stream.write(view)
        if written is None:
            raise BlockingIOError("stdin pipe is full")
        view = view[written:]
    stream.flush()

