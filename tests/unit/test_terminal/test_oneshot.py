"""Tests for the one-shot executor."""

from __future__ import annotations

import os
import sys

import pytest

from shellrelay.terminal.oneshot import OneShotExecutor

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/sh"),
    reason="needs a POSIX shell",
)


class TestOneShotExecutor:
    @pytest.mark.asyncio
    async def test_runs_in_given_directory(self, tmp_path) -> None:
        outcome = await OneShotExecutor().run("pwd", cwd=str(tmp_path), timeout=5.0)
        assert outcome.success is True
        assert os.path.realpath(outcome.stdout.strip()) == os.path.realpath(tmp_path)

    @pytest.mark.asyncio
    async def test_reports_real_exit_code(self, tmp_path) -> None:
        outcome = await OneShotExecutor().run("echo bad >&2; exit 4", cwd=str(tmp_path), timeout=5.0)
        assert outcome.success is False
        assert outcome.exit_code == 4
        assert outcome.stderr.strip() == "bad"
        assert outcome.error == "Command failed with exit code 4"

    @pytest.mark.asyncio
    async def test_environment_passed(self, tmp_path) -> None:
        env = {**os.environ, "ONESHOT_VAR": "value"}
        outcome = await OneShotExecutor().run("echo $ONESHOT_VAR", cwd=str(tmp_path), env=env, timeout=5.0)
        assert outcome.stdout.strip() == "value"

    @pytest.mark.asyncio
    async def test_state_does_not_persist(self, tmp_path) -> None:
        executor = OneShotExecutor()
        await executor.run("export GONE=1", cwd=str(tmp_path), timeout=5.0)
        outcome = await executor.run("echo ${GONE:-unset}", cwd=str(tmp_path), timeout=5.0)
        assert outcome.stdout.strip() == "unset"

    @pytest.mark.asyncio
    async def test_timeout_kills_whole_command(self, tmp_path) -> None:
        outcome = await OneShotExecutor().run("echo early; sleep 5; echo x", cwd=str(tmp_path), timeout=0.2)
        assert outcome.success is False
        assert outcome.exit_code == -1
        assert "timed out" in (outcome.error or "")
        assert outcome.stdout == "early\n"
        assert outcome.duration_ms < 2000

    @pytest.mark.asyncio
    async def test_timeout_kills_background_children(self, tmp_path) -> None:
        outcome = await OneShotExecutor().run("sleep 5 & sleep 5 & wait", cwd=str(tmp_path), timeout=0.2)
        assert outcome.exit_code == -1
        assert outcome.duration_ms < 2000

    @pytest.mark.asyncio
    async def test_output_truncated(self, tmp_path) -> None:
        outcome = await OneShotExecutor(output_limit=10).run(
            "printf '%050d' 0", cwd=str(tmp_path), timeout=5.0
        )
        assert outcome.stdout == "0" * 10 + "\n... (output truncated)"

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path) -> None:
        outcome = await OneShotExecutor().run("true", cwd=str(tmp_path / "missing"), timeout=5.0)
        assert outcome.success is False
        assert outcome.exit_code == 127
        assert outcome.error is not None
