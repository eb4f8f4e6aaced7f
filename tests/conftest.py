"""Shared test fixtures for authloop.

Provides reusable fixtures for isolated config environments, output state,
local server configurations, and running CLI commands. These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import socket
from pathlib import Path
from typing import Iterator

import pytest

from authloop.models import Profile, ServerConfig, ServerSettings
from authloop.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Drop the installed OutputManager; its Rich consoles hold the streams CliRunner swapped in."""
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Profile fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_profile() -> Profile:
    """A public-client profile reading its client id from the environment."""
    return Profile(
        name="test-idp",
        authorization_url="https://idp.example.com/authorize",
        token_url="https://idp.example.com/token",
        client_id_source="env:TEST_CLIENT_ID",
        scopes=["openid", "email"],
        server=ServerSettings(bind_addresses=["127.0.0.1:0"]),
    )


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config, forces the XDG layout,
    clears AUTHLOOP_PROFILE and changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("authloop.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("AUTHLOOP_PROFILE", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Local server fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def server_config() -> ServerConfig:
    """Loopback on a free port with a short shutdown grace."""
    return ServerConfig(bind_addresses=("127.0.0.1:0",), shutdown_grace=2.0)


@pytest.fixture
def occupied_port() -> Iterator[int]:
    """A loopback port held by a listening socket for the test's duration."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> Iterator[OutputManager]:
    """Plain, quiet output for tests that only care about stdout data."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> Iterator[OutputManager]:
    """Set up JSON output for tests that check JSON-formatted output."""
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """CliRunner for invoking the authloop app."""
    from typer.testing import CliRunner

    return CliRunner()
