"""procmux environment configuration.

Environment variables:
    PROCMUX_READ_SIZE: bytes requested per pipe read
        - default 65536
        - clamped to 1..1048576, invalid values fall back to the default

    PROCMUX_ENCODING: text encoding for ProcessResult.stdout/stderr and str stdin
        - default utf-8
        - unknown codecs fall back to the default

    PROCMUX_LINE_BUFFERED: deliver output to subscribers and readers line by line
        - true/1/yes/on = lines
        - false/0/no = raw chunks (default)

    PROCMUX_LOG_DEBUG: debug logging for the command line entry point
        - true/1/yes/on = log to a file in the temp directory
        - false/0/no = warnings to stderr only (default)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_READ_SIZE = 65536
MAX_READ_SIZE = 1 << 20
DEFAULT_ENCODING = "utf-8"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_read_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_SIZE
    return max(1, min(size, MAX_READ_SIZE))


def _parse_encoding(value: str | None) -> str:
    """Return a codec name Python knows, or the default."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


@dataclass
class Config:
    """procmux configuration.

    Attributes:
        read_size: Bytes requested per drainer read
        encoding: Text encoding for decoded output and str stdin payloads
        line_buffered: Default delivery granularity for new handles
        log_debug: Debug log file for the CLI
        log_file: Log file path (set when log_debug=True)
    """

    read_size: int = DEFAULT_READ_SIZE
    encoding: str = DEFAULT_ENCODING
    line_buffered: bool = False
    log_debug: bool = False
    log_file: str | None = None


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "procmux"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procmux_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PROCMUX_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        read_size=_parse_read_size(os.environ.get("PROCMUX_READ_SIZE")),
        encoding=_parse_encoding(os.environ.get("PROCMUX_ENCODING")),
        line_buffered=_parse_bool(os.environ.get("PROCMUX_LINE_BUFFERED"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# Lazily loaded global instance
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
