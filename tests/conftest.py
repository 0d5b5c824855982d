"""Shared test fixtures for labctl.

Provides isolated config environments, in-memory and on-disk credential
stores, a fake clock, output state management and a CLI runner. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from labctl.auth.credential_store import FileCredentialStore, MemoryCredentialStore
from labctl.models import AuthMethod, HostRecord
from labctl.output import OutputFormat, OutputManager, reset_output, set_output


NOW = 1_700_000_000


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points LABCTL_CONFIG_DIR and the XDG variables at subdirectories of
    tmp_path so that tests never touch real user config, and clears every
    environment variable that changes which host or token labctl picks.

    Returns:
        The config directory (``tmp_path / "config"``).
    """
    config_dir = tmp_path / "config"
    monkeypatch.setenv("LABCTL_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ["LABCTL_TOKEN", "GITLAB_TOKEN", "GITLAB_HOST"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return config_dir


# ---------------------------------------------------------------------------
# Credential fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def file_store(isolated_config: Path) -> FileCredentialStore:
    """A FileCredentialStore writing to the isolated config directory."""
    return FileCredentialStore(isolated_config / "hosts.json")


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def oauth_record() -> HostRecord:
    """An OAuth record issued at NOW that expires two hours later."""
    return HostRecord(
        host="gitlab.example.com",
        access_token="old-access-token",
        refresh_token="old-refresh-token",
        token_created_at=NOW,
        token_expires_at=NOW + 7200,
        auth_method=AuthMethod.OAUTH,
        client_id="client-123",
        redirect_uri="http://localhost:7171/auth/redirect",
        scopes="openid profile api read_user write_repository",
        username="alice",
        git_protocol="ssh",
    )


@pytest.fixture
def static_record() -> HostRecord:
    return HostRecord(
        host="gitlab.example.com",
        access_token="glpat-static-token",
        auth_method=AuthMethod.STATIC_TOKEN,
        username="alice",
    )


class FakeClock:
    """Callable clock returning a settable Unix time."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Set up a quiet output manager for tests that don't care about output.

    Installs a PLAIN-format, quiet OutputManager as the global output
    and resets it after the test completes.
    """
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
