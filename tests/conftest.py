"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture
def py() -> Callable[[str], list[str]]:
    """Build an argv running a Python snippet with the current interpreter."""

    def build(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return build


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch: pytest.MonkeyPatch):
    """Isolate every test from PROCMUX_* variables of the surrounding shell."""
    from procmux.config import reload_config

    for name in ("PROCMUX_READ_SIZE", "PROCMUX_ENCODING", "PROCMUX_LINE_BUFFERED", "PROCMUX_LOG_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    reload_config()
