"""Command line entry point.

Runs one program with live echo of both streams and exits with its exit code:

    procmux [--can-fail] [--quiet] [--line-buffered] [--cwd DIR]
            [--env KEY=VALUE]... [--stdin-file PATH] -- PROGRAM [ARGS...]
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from .config import Config, get_config
from .errors import InvalidArgument, LaunchFailure, ProcessError
from .runtime import run_blocking

__all__ = ["main", "setup_logging"]

logger = logging.getLogger(__name__)

EXIT_USAGE = 2
EXIT_LAUNCH_FAILURE = 127

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: Config) -> None:
    """Configure logging for the command line tool.

    Debug mode writes everything to config.log_file; otherwise only warnings
    reach stderr, so they do not mix with the child's echoed output.
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.WARNING

    logging.basicConfig(level=logging.WARNING, handlers=log_handlers, force=True)
    logging.getLogger("procmux").setLevel(log_level)


def _parse_env(pairs: Sequence[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise InvalidArgument(f"--env expects KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procmux",
        description="Run a program, echo its output live and exit with its exit code",
    )
    parser.add_argument("--can-fail", action="store_true", help="Do not report non-zero exits")
    parser.add_argument("--quiet", action="store_true", help="Do not echo the program's output")
    parser.add_argument(
        "--line-buffered", action="store_true", default=None, help="Echo whole lines only"
    )
    parser.add_argument("--cwd", type=Path, default=None, help="Working directory")
    parser.add_argument(
        "--env", action="append", default=[], metavar="KEY=VALUE", help="Environment override"
    )
    parser.add_argument("--stdin-file", type=Path, default=None, help="File fed to stdin")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Program and arguments")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point. Returns the process exit code."""
    config = get_config()
    setup_logging(config)

    args = build_parser().parse_args(argv)
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]

    stdin = None
    if args.stdin_file is not None:
        try:
            stdin = args.stdin_file.read_bytes()
        except OSError as e:
            print(f"procmux: cannot read {args.stdin_file}: {e.strerror or e}", file=sys.stderr)
            return EXIT_USAGE

    try:
        result = run_blocking(
            command,
            can_fail=args.can_fail,
            echo_stdout=not args.quiet,
            echo_stderr=not args.quiet,
            env=_parse_env(args.env) or None,
            cwd=args.cwd,
            stdin=stdin,
            line_buffered=args.line_buffered,
        )
    except InvalidArgument as e:
        print(f"procmux: {e}", file=sys.stderr)
        return EXIT_USAGE
    except LaunchFailure as e:
        print(f"procmux: {e}", file=sys.stderr)
        return EXIT_LAUNCH_FAILURE
    except ProcessError as e:
        print(str(e), file=sys.stderr, end="")
        return e.result.exit_code

    return result.exit_code
