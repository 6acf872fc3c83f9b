"""Shared test fixtures for ravelry.

Provides isolated config environments, token-set factories, output
state management, and a CLI runner. These fixtures are discovered by
pytest automatically and available to all test modules.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from ravelry.models import OAuth2ClientConfig, TokenSet
from ravelry.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The manager keeps references to sys.stdout/sys.stderr from creation
    time; CliRunner swaps those streams, so a stale manager would write to
    closed files in the next test.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Token fixtures
# ---------------------------------------------------------------------------


def _make_token(
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expires_in: Optional[float] = 3600,
) -> TokenSet:
    """Build a TokenSet expiring *expires_in* seconds from now (negative = already expired)."""
    expires_at = None
    if expires_in is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return TokenSet(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )


@pytest.fixture
def make_token():
    """Factory fixture: `make_token(access_token=..., refresh_token=..., expires_in=...)`."""
    return _make_token


@pytest.fixture
def valid_token() -> TokenSet:
    return _make_token()


@pytest.fixture
def expired_token() -> TokenSet:
    return _make_token(access_token="stale-access", expires_in=-60)


@pytest.fixture
def oauth_config() -> OAuth2ClientConfig:
    return OAuth2ClientConfig(
        client_id="client-abc",
        client_secret="secret-xyz",
        redirect_uri="https://localhost:0/callback",
        authorization_url="https://www.example.com/oauth2/auth",
        token_url="https://www.example.com/oauth2/token",
    )


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Forces XDG path resolution, points XDG_CONFIG_HOME and XDG_DATA_HOME
    at subdirectories of tmp_path, clears all RAVELRY_* variables, and
    changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setattr("ravelry.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "RAVELRY_BASE_URL",
        "RAVELRY_TIMEOUT",
        "RAVELRY_REDIRECT_URI",
        "RAVELRY_CALLBACK_TIMEOUT",
        "RAVELRY_PROFILE",
        "RAVELRY_ACCESS_KEY",
        "RAVELRY_PERSONAL_KEY",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN, quiet OutputManager for tests that don't inspect output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
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
