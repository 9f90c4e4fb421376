# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the mcp-safe-run test suite.

This module provides:
- An in-memory credential store that records every lookup
- Resolver fixtures wired to a fixed environment snapshot
- Secret files and profile files in temporary directories

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from safe_run.core.capabilities import CredentialStore, CredentialStoreError
from safe_run.core.config import LaunchConfig
from safe_run.core.resolver import PlaceholderResolver


# =============================================================================
# Credential Store Fixtures
# =============================================================================


class FakeCredentialStore(CredentialStore):
    """Dictionary-backed credential store that records calls.

    Set ``error`` to make every lookup fail as an unavailable backend would.
    """

    def __init__(
        self,
        secrets: dict[tuple[str, str], str] | None = None,
        error: str | None = None,
    ):
        self.secrets = dict(secrets or {})
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def get_password(self, service: str, account: str) -> str | None:
        self.calls.append((service, account))
        if self.error is not None:
            raise CredentialStoreError(self.error)
        return self.secrets.get((service, account))


@pytest.fixture
def credential_store() -> FakeCredentialStore:
    """Credential store holding one secret for ("svc", "acct")."""
    return FakeCredentialStore({("svc", "acct"): "s3cr3t"})


@pytest.fixture
def base_environ() -> dict[str, str]:
    """Inherited environment used by resolver tests."""
    return {
        "PATH": "/usr/bin:/bin",
        "MY_API_KEY": "key-from-env",
        "EMPTY_VAR": "",
    }


@pytest.fixture
def resolver(base_environ, credential_store) -> PlaceholderResolver:
    """Resolver over ``base_environ`` and the fake credential store."""
    return PlaceholderResolver(environ=base_environ, credential_store=credential_store)


# =============================================================================
# File System Fixtures
# =============================================================================


@pytest.fixture
def secret_file(tmp_path: Path) -> Path:
    """File containing a secret followed by a trailing newline."""
    path = tmp_path / "secret.txt"
    path.write_text("secret_from_file\n")
    return path


@pytest.fixture
def profile_file(tmp_path: Path) -> Path:
    """Profile file with two profiles in a temporary directory."""
    path = tmp_path / ".mcp-saferun.yaml"
    path.write_text(
        """profiles:
  github:
    target-env:
      GITHUB_TOKEN: "env:MY_API_KEY"
      PORT: "9000"
  empty: {}
"""
    )
    return path


@pytest.fixture
def settings(tmp_path: Path) -> LaunchConfig:
    """Settings with the user config directory inside tmp_path."""
    return LaunchConfig(grace_period=1.0, user_config_dir=tmp_path / "user-config")


@pytest.fixture
def python_cmd() -> str:
    """Interpreter used as the target command in process tests."""
    return sys.executable


@pytest.fixture
def make_credential_store():
    """Factory for FakeCredentialStore instances with custom contents."""
    return FakeCredentialStore
