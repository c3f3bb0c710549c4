"""ProcessHandle tests: live subscription, pull reads, stdin, result aggregation."""

from __future__ import annotations

import threading
import time

import pytest

from procmux import EOF, InvalidArgument, ProcessResult, launch
from procmux.runtime.drainer import IS_WINDOWS

# Prints "foo", waits for one line on stdin, prints "done"
GATED_SCRIPT = (
    "import sys; print('foo', flush=True); sys.stdin.readline(); "
    "print('bar', file=sys.stderr, flush=True); print('done', flush=True)"
)


def _wait_for(predicate, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


# =============================================================================
# Subscription Tests
# =============================================================================


class TestSubscription:
    """Replay-then-live semantics on a running process."""

    @pytest.mark.timeout(30)
    def test_late_subscriber_gets_replay_then_live(self, py):
        handle = launch(py(GATED_SCRIPT))
        _wait_for(lambda: handle.stdout.getvalue() == b"foo\n")

        stdout_calls: list[bytes] = []
        stderr_calls: list[bytes] = []
        handle.subscribe_stdout(stdout_calls.append)
        handle.subscribe_stderr(stderr_calls.append)
        assert stdout_calls == [b"foo\n"]
        assert stderr_calls == []

        handle.write_stdin(b"go\n")
        result = handle.await_result()

        assert stdout_calls[0] == b"foo\n"
        assert b"".join(stdout_calls[1:]) == b"done\n"
        assert b"".join(stderr_calls) == b"bar\n"
        assert b"".join(stdout_calls) == result.stdout_bytes
        assert result.stdout == "foo\ndone\n"
        assert result.stderr == "bar\n"
        assert result.exit_code == 0

    @pytest.mark.timeout(60)
    def test_concatenated_increments_match_result(self, py):
        handle = launch(
            py("import sys\nfor i in range(2000):\n    sys.stdout.write(f'{i}\\n'); sys.stdout.flush()")
        )
        received: list[bytes] = []
        time.sleep(0.05)
        handle.subscribe_stdout(received.append)

        result = handle.await_result()

        assert b"".join(received) == result.stdout_bytes
        assert result.stdout.splitlines() == [str(i) for i in range(2000)]

    @pytest.mark.timeout(30)
    def test_line_buffered_handle_delivers_lines(self, py):
        handle = launch(
            py("import sys; sys.stdout.write('a\\nb'); sys.stdout.flush(); sys.stdout.write('c\\nd')"),
            line_buffered=True,
        )
        received: list[bytes] = []
        handle.subscribe_stdout(received.append)
        result = handle.await_result()

        assert b"".join(received) == b"a\nbc\nd"
        assert all(line.endswith(b"\n") for line in received[:-1])
        assert received[-1] == b"d"
        assert result.stdout == "a\nbc\nd"


# =============================================================================
# Pull Read Tests
# =============================================================================


class TestPullReads:
    """read_*_chunk and iteration."""

    @pytest.mark.timeout(30)
    def test_read_until_eof(self, py):
        handle = launch(py("import sys; print('out'); print('err', file=sys.stderr)"))

        stdout = b"".join(handle.iter_stdout())
        chunks = []
        while (chunk := handle.read_stderr_chunk()) is not EOF:
            chunks.append(chunk)

        assert stdout == b"out\n"
        assert b"".join(chunks) == b"err\n"
        assert handle.read_stdout_chunk() is EOF
        assert handle.await_result().stdout == "out\n"

    @pytest.mark.timeout(30)
    def test_read_timeout_while_child_is_silent(self, py):
        handle = launch(py("import sys; sys.stdin.read()"))

        assert handle.read_stdout_chunk(timeout=0.1) == b""
        assert handle.poll() is None

        handle.close_stdin()
        assert handle.read_stdout_chunk() is EOF
        assert handle.await_result().exit_code == 0


# =============================================================================
# Stdin Tests
# =============================================================================


class TestStdin:
    """Interactive stdin and payload feeding."""

    @pytest.mark.timeout(30)
    def test_write_stdin_interactively(self, py):
        handle = launch(py("import sys; print(sys.stdin.read().upper(), end='')"))
        handle.write_stdin(b"hello ")
        handle.write_stdin("world")

        assert handle.await_result().stdout == "HELLO WORLD"

    @pytest.mark.timeout(30)
    def test_close_stdin_is_idempotent(self, py):
        handle = launch(py("import sys; sys.stdin.read()"))
        handle.close_stdin()
        handle.close_stdin()

        assert handle.await_result().exit_code == 0

    @pytest.mark.timeout(30)
    def test_write_after_close_is_rejected(self, py):
        handle = launch(py("import sys; sys.stdin.read()"))
        handle.close_stdin()

        with pytest.raises(InvalidArgument):
            handle.write_stdin(b"late")
        handle.await_result()

    @pytest.mark.timeout(30)
    def test_payload_after_close_is_dropped_quietly(self, py, monkeypatch):
        thread_errors: list[threading.ExceptHookArgs] = []
        monkeypatch.setattr(threading, "excepthook", thread_errors.append)
        handle = launch(py("import sys; print(repr(sys.stdin.read()))"))
        handle.close_stdin()

        handle.feed_stdin(b"late")
        result = handle.await_result()

        assert result.stdout == "''\n"
        assert thread_errors == []

    @pytest.mark.timeout(30)
    def test_payload_closes_stdin(self, py):
        handle = launch(py("import sys; print(len(sys.stdin.read()))"), stdin="abc")

        assert handle.await_result().stdout == "3\n"

    @pytest.mark.timeout(60)
    def test_large_payload_ignored_by_child(self, py):
        handle = launch(py("print('ignored stdin')"), stdin=b"x" * (4 * 1024 * 1024))

        result = handle.await_result()
        assert result.stdout == "ignored stdin\n"
        assert result.exit_code == 0

    @pytest.mark.timeout(60)
    def test_large_payload_echoed_back(self, py):
        payload = b"0123456789abcdef" * (256 * 1024)
        handle = launch(
            py("import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())"),
            stdin=payload,
        )

        assert handle.await_result().stdout_bytes == payload


# =============================================================================
# Result Aggregation Tests
# =============================================================================


class TestAwaitResult:
    """Exit + drain aggregation and caching."""

    @pytest.mark.timeout(30)
    def test_idempotent(self, py):
        handle = launch(py("import sys; print('x'); sys.exit(3)"))

        first = handle.await_result()
        second = handle.await_result()

        assert first == second
        assert first is second
        assert first.exit_code == 3
        assert first.pid == handle.pid

    @pytest.mark.timeout(30)
    def test_concurrent_callers_share_result(self, py):
        handle = launch(py("import time; time.sleep(0.2); print('x')"))
        results: list[ProcessResult] = []

        threads = [threading.Thread(target=lambda: results.append(handle.await_result())) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 4
        assert all(result is results[0] for result in results)

    @pytest.mark.timeout(30)
    def test_output_written_right_before_exit_is_kept(self, py):
        handle = launch(py("import os; os.write(1, b'last words'); os._exit(0)"))

        assert handle.await_result().stdout == "last words"

    @pytest.mark.timeout(30)
    def test_grandchild_holding_pipe_delays_result(self, py):
        """The result waits for EOF, not just for the direct child to exit."""
        code = (
            "import subprocess, sys; "
            "subprocess.Popen([sys.executable, '-c', "
            "'import time; time.sleep(0.5); print(\"late\", flush=True)']); "
            "print('early', flush=True)"
        )
        result = launch(py(code)).await_result()

        assert result.stdout == "early\nlate\n"

    @pytest.mark.timeout(30)
    def test_non_zero_exit_does_not_raise(self, py):
        result = launch(py("raise SystemExit(1)")).await_result()

        assert result.exit_code == 1
        assert not result.success

    @pytest.mark.timeout(30)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX signals")
    def test_killed_by_signal(self):
        result = launch(["sh", "-c", "kill -9 $$"]).await_result()

        assert result.exit_code == 128 + 9

    @pytest.mark.timeout(30)
    def test_poll(self, py):
        handle = launch(py("import sys; sys.stdin.read()"))
        assert handle.poll() is None

        result = handle.await_result()
        assert handle.poll() == result.exit_code == 0

    @pytest.mark.timeout(30)
    def test_context_manager_awaits_result(self, py):
        with launch(py("print('inside')")) as handle:
            pass

        assert handle.stdout.closed
        assert handle.await_result().stdout == "inside\n"

    @pytest.mark.timeout(30)
    def test_context_manager_reraises_after_child_exits(self, py):
        with pytest.raises(RuntimeError, match="body failed"):
            with launch(py("import sys; sys.stdin.read(); print('finished')")) as handle:
                raise RuntimeError("body failed")

        assert handle.poll() == 0
        assert handle.await_result().stdout == "finished\n"

    def test_result_is_frozen(self):
        result = ProcessResult(stdout_bytes=b"", stderr_bytes=b"", exit_code=0, pid=1)

        with pytest.raises(AttributeError):
            result.exit_code = 1  # type: ignore

    def test_result_text_uses_encoding(self):
        result = ProcessResult(
            stdout_bytes="é".encode("latin-1"),
            stderr_bytes=b"\xff",
            exit_code=0,
            pid=1,
            encoding="latin-1",
        )

        assert result.stdout == "é"
        assert result.stderr == "ÿ"


# =============================================================================
# Async Tests
# =============================================================================


class TestAsync:
    """Coroutine access to the result."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(30)
    async def test_await_result_async(self, py):
        handle = launch(py("print('async')"))

        result = await handle.await_result_async()

        assert result.stdout == "async\n"
        assert result is handle.await_result()
