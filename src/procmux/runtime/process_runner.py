"""Blocking and async convenience runners.

procmux runtime module v0.1.0

This module provides:
- run_blocking(): launch, optionally echo live output, wait, raise on failure
- run_async(): the same call for coroutines, executed on a worker thread
- ProcessRunner: the configurable object behind both

Key design points:
- Output is always drained concurrently, so large outputs never deadlock
- Echo goes to whatever sys.stdout/sys.stderr are at call time
- Non-zero exit raises ProcessError unless can_fail=True
"""

from __future__ import annotations

import functools
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TextIO

import anyio.to_thread

from ..errors import ProcessError
from .channel import Subscriber
from .handle import ProcessResult
from .launcher import launch

__all__ = [
    "ProcessRunner",
    "run_async",
    "run_blocking",
]

logger = logging.getLogger(__name__)


def echo_to(stream: TextIO, encoding: str = "utf-8") -> Subscriber:
    """Build a subscriber that copies increments to ``stream`` as they arrive."""
    buffer = getattr(stream, "buffer", None)

    def echo(chunk: bytes) -> None:
        if buffer is not None:
            stream.flush()
            buffer.write(chunk)
            buffer.flush()
        else:
            stream.write(chunk.decode(encoding, errors="replace"))
            stream.flush()

    return echo


@dataclass
class ProcessRunner:
    """Runs commands to completion with concurrent output draining.

    Example:
        runner = ProcessRunner(line_buffered=True, encoding="latin-1")
        result = runner.run(["git", "status"], echo_stdout=True)
        print(result.exit_code)
    """

    line_buffered: bool | None = None
    read_size: int | None = None
    encoding: str | None = None

    def run(
        self,
        command: Sequence[str | os.PathLike[str]],
        *,
        can_fail: bool = False,
        echo_stdout: bool = False,
        echo_stderr: bool = False,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        stdin: bytes | str | None = None,
    ) -> ProcessResult:
        """Run ``command`` and wait for it.

        Args:
            command: Program and arguments
            can_fail: Return non-zero results instead of raising
            echo_stdout: Copy stdout to sys.stdout in real time
            echo_stderr: Copy stderr to sys.stderr in real time
            env: Environment variable overrides
            cwd: Working directory for the child
            stdin: Payload for the child's stdin

        Returns:
            ProcessResult with captured output, exit code and pid

        Raises:
            InvalidArgument: Empty or malformed command
            LaunchFailure: The OS could not create the process
            ProcessError: Non-zero exit and can_fail is False
        """
        handle = launch(
            command,
            env=env,
            cwd=cwd,
            stdin=stdin,
            line_buffered=self.line_buffered,
            read_size=self.read_size,
            encoding=self.encoding,
        )

        encoding = handle.encoding
        if echo_stdout:
            handle.subscribe_stdout(echo_to(sys.stdout, encoding))
        if echo_stderr:
            handle.subscribe_stderr(echo_to(sys.stderr, encoding))

        result = handle.await_result()

        if not can_fail and not result.success:
            logger.debug(f"Command failed pid={result.pid} exit_code={result.exit_code}")
            raise ProcessError(handle.argv, result)

        return result

    async def run_async(
        self,
        command: Sequence[str | os.PathLike[str]],
        **options,
    ) -> ProcessResult:
        """Coroutine flavour of ``run``; accepts the same keyword options."""
        return await anyio.to_thread.run_sync(functools.partial(self.run, command, **options))


def run_blocking(
    command: Sequence[str | os.PathLike[str]],
    *,
    can_fail: bool = False,
    echo_stdout: bool = False,
    echo_stderr: bool = False,
    env: Mapping[str, str] | None = None,
    cwd: str | os.PathLike[str] | None = None,
    stdin: bytes | str | None = None,
    line_buffered: bool | None = None,
) -> ProcessResult:
    """Run ``command`` to completion. See ProcessRunner.run."""
    return ProcessRunner(line_buffered=line_buffered).run(
        command,
        can_fail=can_fail,
        echo_stdout=echo_stdout,
        echo_stderr=echo_stderr,
        env=env,
        cwd=cwd,
        stdin=stdin,
    )


async def run_async(
    command: Sequence[str | os.PathLike[str]],
    *,
    line_buffered: bool | None = None,
    **options,
) -> ProcessResult:
    """Run ``command`` to completion without blocking the event loop."""
    return await ProcessRunner(line_buffered=line_buffered).run_async(command, **options)
