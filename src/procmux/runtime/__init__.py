"""Runtime module for subprocess launching and output draining.

This module provides concurrent draining of a child's stdout and stderr,
subscriber fan-out of live output, and blocking/async result collection.
"""

from __future__ import annotations

from .channel import EOF, OutputChannel, Subscriber
from .drainer import StreamDrainer
from .handle import ProcessHandle, ProcessResult
from .launcher import ProcessSpec, launch, start
from .process_runner import ProcessRunner, run_async, run_blocking

__all__ = [
    "EOF",
    "OutputChannel",
    "ProcessHandle",
    "ProcessResult",
    "ProcessRunner",
    "ProcessSpec",
    "StreamDrainer",
    "Subscriber",
    "launch",
    "run_async",
    "run_blocking",
    "start",
]
