"""procmux: run subprocesses with concurrent stdout/stderr draining.

Usage:
    from procmux import run_blocking, launch

    result = run_blocking(["echo", "hi"])
    assert result.stdout == "hi\\n"

    with launch(["make", "test"]) as handle:
        handle.subscribe_stderr(lambda chunk: print(chunk.decode(), end=""))
        result = handle.await_result()
"""

from __future__ import annotations

from .errors import InvalidArgument, LaunchFailure, ProcessError, ProcmuxError
from .runtime import (
    EOF,
    ProcessHandle,
    ProcessResult,
    ProcessRunner,
    launch,
    run_async,
    run_blocking,
)

__version__ = "0.1.0"

__all__ = [
    "EOF",
    "InvalidArgument",
    "LaunchFailure",
    "ProcessError",
    "ProcessHandle",
    "ProcessResult",
    "ProcessRunner",
    "ProcmuxError",
    "launch",
    "run_async",
    "run_blocking",
]
