"""procmux exception classes.

All errors raised by procmux derive from ProcmuxError, so callers can catch the
whole family with a single except clause.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime.handle import ProcessResult

__all__ = [
    "ProcmuxError",
    "InvalidArgument",
    "LaunchFailure",
    "ProcessError",
    "format_failure",
]


class ProcmuxError(Exception):
    """Base class for procmux errors."""
    pass


class InvalidArgument(ProcmuxError, ValueError):
    """The caller passed something procmux cannot act on (e.g. an empty command)."""
    pass


class LaunchFailure(ProcmuxError):
    """The OS refused to create the child process.

    Attributes:
        command: The argv that failed to start
        reason: Short description taken from the underlying OSError
    """

    def __init__(self, command: Sequence[str], reason: str) -> None:
        self.command = list(command)
        self.reason = reason
        super().__init__(f"Failed to launch {shlex.join(self.command)}: {reason}")


class ProcessError(ProcmuxError):
    """The process ran to completion but exited non-zero.

    Attributes:
        command: The argv that was run
        result: The full ProcessResult, including captured output
    """

    def __init__(self, command: Sequence[str], result: ProcessResult) -> None:
        self.command = list(command)
        self.result = result
        super().__init__(format_failure(self.command, result))


def format_failure(command: Sequence[str], result: ProcessResult) -> str:
    """Render the diagnostic message carried by ProcessError."""
    return (
        f"Command failed: {shlex.join(command)}\n"
        f"Exit code: {result.exit_code}\n"
        f"Pid: {result.pid}\n"
        f"stdout: {result.stdout}\n"
        f"stderr: {result.stderr}\n"
    )
