"""Shared test fixtures for anitrack.

Provides isolated config environments, output state management and a CLI
runner. These fixtures are discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

import socket
from pathlib import Path

import pytest

from anitrack.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams and the
    test finishes, the cached references become stale. Resetting forces a
    fresh manager on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Isolated environment
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and the XDG dirs at *tmp_path* and clear anitrack env vars."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ("ANITRACK_CONFIG", "ANITRACK_CLIENT_ID", "ANITRACK_CLIENT_SECRET"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture
def plain_output() -> OutputManager:
    """Install a plain-text, colourless OutputManager."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True)
    set_output(output)
    return output


@pytest.fixture
def cli_runner():
    """Return a Typer CliRunner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def free_port() -> int:
    """A loopback port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
