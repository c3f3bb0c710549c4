"""Process launcher.

Turns a command plus options into a running child and a ProcessHandle wired to
a started drainer. Environment and working-directory changes apply to the child
only; the caller's own process is never modified.
"""

from __future__ import annotations

import codecs
import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import get_config
from ..errors import InvalidArgument, LaunchFailure
from .channel import OutputChannel
from .drainer import StreamDrainer
from .handle import ProcessHandle

__all__ = [
    "ProcessSpec",
    "launch",
    "start",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment overrides merged over the caller's environment
        stdin_bytes: Optional bytes written to stdin, after which stdin is closed
        line_buffered: Deliver output as whole lines instead of raw chunks
        read_size: Maximum bytes per pipe read
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None
    line_buffered: bool = False
    read_size: int = field(default=65536, compare=False)


def _normalize_argv(command: Sequence[str | os.PathLike[str]]) -> list[str]:
    if isinstance(command, (str, bytes)):
        raise InvalidArgument(
            "command must be a sequence of arguments, not a single string "
            "(shell interpretation is not supported)"
        )
    argv: list[str] = []
    for arg in command:
        if not isinstance(arg, (str, os.PathLike)):
            raise InvalidArgument(f"command arguments must be strings, got {arg!r}")
        arg = os.fspath(arg)
        if "\0" in arg:
            raise InvalidArgument(f"command arguments must not contain NUL bytes, got {arg!r}")
        argv.append(arg)
    if not argv:
        raise InvalidArgument("command must not be empty")
    return argv


def _resolve_encoding(encoding: str) -> str:
    try:
        return codecs.lookup(encoding).name
    except LookupError as e:
        raise InvalidArgument(f"unknown encoding: {encoding}") from e


def _build_subprocess_kwargs(spec: ProcessSpec) -> dict[str, Any]:
    """Build Popen kwargs for a spec.

    Returns:
        Dict of kwargs for subprocess.Popen
    """
    kwargs: dict[str, Any] = {
        "stdin": subprocess.PIPE,
        "stdout": subprocess.PIPE,
        "stderr": subprocess.PIPE,
        # Unbuffered pipes: the drainer reads raw descriptors
        "bufsize": 0,
    }

    if spec.env is not None:
        kwargs["env"] = {**os.environ, **spec.env}

    if spec.cwd is not None:
        kwargs["cwd"] = spec.cwd

    return kwargs


def start(spec: ProcessSpec, encoding: str = "utf-8") -> ProcessHandle:
    """Start the process described by ``spec`` and begin draining its output.

    Args:
        spec: Process specification
        encoding: Codec for the result's text views

    Returns:
        ProcessHandle for the running child

    Raises:
        InvalidArgument: Empty or malformed argv
        LaunchFailure: The OS could not create the process
    """
    argv = _normalize_argv(spec.argv)
    kwargs = _build_subprocess_kwargs(spec)

    try:
        process = subprocess.Popen(argv, **kwargs)
    except OSError as e:
        raise LaunchFailure(argv, e.strerror or str(e)) from e

    logger.debug(
        f"Started subprocess pid={process.pid} "
        f"argv={argv[0]} cwd={spec.cwd or os.getcwd()}"
    )

    assert process.stdout is not None and process.stderr is not None
    stdout = OutputChannel("stdout", line_buffered=spec.line_buffered)
    stderr = OutputChannel("stderr", line_buffered=spec.line_buffered)
    drainer = StreamDrainer(
        {process.stdout.fileno(): stdout, process.stderr.fileno(): stderr},
        read_size=spec.read_size,
        name=f"procmux-drain-{process.pid}",
    )
    drainer.start()

    handle = ProcessHandle(process, argv, stdout, stderr, drainer, encoding=encoding)
    if spec.stdin_bytes is not None:
        handle.feed_stdin(spec.stdin_bytes)
    return handle


def launch(
    command: Sequence[str | os.PathLike[str]],
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | os.PathLike[str] | None = None,
    stdin: bytes | str | None = None,
    line_buffered: bool | None = None,
    read_size: int | None = None,
    encoding: str | None = None,
) -> ProcessHandle:
    """Launch ``command`` and return a handle without waiting for it.

    Args:
        command: Program and arguments
        env: Environment variable overrides for the child
        cwd: Working directory for the child (``~`` is expanded)
        stdin: Payload written to stdin before it is closed; without one,
            stdin stays open for ``ProcessHandle.write_stdin``
        line_buffered: Line instead of chunk delivery (default from config)
        read_size: Maximum bytes per pipe read (default from config)
        encoding: Codec for str stdin and the result's text views (default from config)

    Returns:
        ProcessHandle for the running child

    Raises:
        InvalidArgument: Empty or malformed command
        LaunchFailure: The OS could not create the process
    """
    config = get_config()
    encoding = _resolve_encoding(encoding or config.encoding)
    if read_size is None:
        read_size = config.read_size
    elif read_size < 1:
        raise InvalidArgument(f"read_size must be positive, got {read_size}")

    if isinstance(stdin, str):
        stdin = stdin.encode(encoding)

    spec = ProcessSpec(
        argv=_normalize_argv(command),
        cwd=Path(cwd).expanduser() if cwd is not None else None,
        env=env,
        stdin_bytes=stdin,
        line_buffered=config.line_buffered if line_buffered is None else line_buffered,
        read_size=read_size,
    )
    return start(spec, encoding=encoding)
