"""Shared test fixtures for izcli.

Provides isolated path providers and stores, environment scrubbing,
output state management, and a CLI runner. These fixtures are discovered
automatically by pytest and available to all test modules.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from izcli.config import ConfigStore
from izcli.output import OutputFormat, OutputManager, reset_output, set_output
from izcli.paths import PathProvider
from izcli.sessions import SessionStore


IZ_ENV_VARS = (
    "IZ_BASE_URL",
    "IZ_LEADER_URL",
    "IZ_PROFILE",
    "IZ_TENANT",
    "IZ_PROJECT",
    "IZ_CONTEXT",
    "IZ_JWT_TOKEN",
    "IZ_PERSONAL_ACCESS_TOKEN",
    "IZ_PERSONAL_ACCESS_TOKEN_USERNAME",
    "IZ_CLIENT_ID",
    "IZ_CLIENT_SECRET",
    "IZ_TIMEOUT",
    "IZ_VERBOSE",
    "IZ_OUTPUT_FORMAT",
    "IZ_COLOR",
)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager keeps Rich consoles bound to the streams that were
    current when it was created. CliRunner swaps those streams per
    invocation, so a manager left over from one test would write to a
    closed stream in the next.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove IZ_* variables and colour overrides from the test environment."""
    for var in IZ_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)


# ---------------------------------------------------------------------------
# Path and store isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def paths(tmp_path: Path) -> PathProvider:
    """A PathProvider keeping config and sessions under tmp_path."""
    return PathProvider.rooted_at(tmp_path)


@pytest.fixture
def config_store(paths: PathProvider) -> ConfigStore:
    return ConfigStore(paths)


@pytest.fixture
def session_store(paths: PathProvider) -> SessionStore:
    return SessionStore(paths)


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and the XDG variables at tmp_path so defaults never touch real files."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def plain_output() -> OutputManager:
    """Install a colourless table-format OutputManager."""
    output = OutputManager(format=OutputFormat.TABLE, color="never")
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> OutputManager:
    """Install a colourless JSON-format OutputManager."""
    output = OutputManager(format=OutputFormat.JSON, color="never")
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
