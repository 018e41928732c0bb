"""Shared test fixtures for the shellrelay test suite.

Provides session config tuned for fast tests, a started bash session,
and registries that are always torn down so no shell process outlives
its test.
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest
import pytest_asyncio

from shellrelay.config.settings import SessionConfig
from shellrelay.domain.models import CommandOutcome
from shellrelay.terminal.registry import SessionRegistry
from shellrelay.terminal.session import ShellSession

BASH = "/bin/bash"


# ---------------------------------------------------------------------------
# Config Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def session_config() -> SessionConfig:
    """Session config with a short kill grace period and no pwd probe."""
    return SessionConfig(
        shell=BASH,
        shell_args=[],
        kill_grace_period=0.2,
        report_shell_pwd=False,
    )


# ---------------------------------------------------------------------------
# Session / Registry Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def registry(session_config: SessionConfig) -> AsyncIterator[SessionRegistry]:
    """A registry whose sessions are all closed after the test."""
    reg = SessionRegistry(config=session_config)
    yield reg
    await reg.stop_sweeper()
    await reg.close_all()


@pytest_asyncio.fixture
async def bash_session(tmp_path) -> AsyncIterator[ShellSession]:
    """A started bash session rooted in a temporary directory."""
    session = ShellSession("test", cwd=str(tmp_path), shell=BASH, kill_grace_period=0.2)
    await session.initialize()
    yield session
    await session.kill()


@pytest.fixture
def ok_outcome() -> CommandOutcome:
    """A successful outcome with some output."""
    return CommandOutcome(success=True, stdout="hello", stderr="", exit_code=0)
