"""Tests for ShellSession against a real bash process."""

from __future__ import annotations

import asyncio
import os
import sys

import pytest

from shellrelay.domain.models import SessionState
from shellrelay.terminal.errors import ProcessSpawnFailure
from shellrelay.terminal.session import ShellSession, default_shell_args

requires_bash = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/bash"),
    reason="needs a POSIX bash",
)

pytestmark = requires_bash


class TestDefaults:
    def test_cmd_gets_quiet_flag(self) -> None:
        assert default_shell_args("cmd.exe") == ["/Q"]

    def test_posix_shell_gets_no_args(self) -> None:
        assert default_shell_args("/bin/bash") == []

    def test_new_session_is_uninitialized(self, tmp_path) -> None:
        session = ShellSession("s", cwd=str(tmp_path), shell="/bin/bash")
        status = session.status()
        assert status.state is SessionState.UNINITIALIZED
        assert status.pid is None
        assert status.working_directory == str(tmp_path)

    def test_environment_is_read_only(self, tmp_path) -> None:
        session = ShellSession("s", cwd=str(tmp_path), shell="/bin/bash", env={"FOO": "1"})
        assert session.environment["FOO"] == "1"
        with pytest.raises(TypeError):
            session.environment["FOO"] = "2"  # type: ignore[index]


class TestExecute:
    @pytest.mark.asyncio
    async def test_echo(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("echo hello", timeout=5.0)
        assert outcome.success is True
        assert outcome.stdout == "hello"
        assert outcome.stderr == ""
        assert outcome.exit_code == 0
        assert "__COMMAND_" not in outcome.stdout

    @pytest.mark.asyncio
    async def test_multiline_and_unicode_output(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("printf 'a\\nb\\n'; echo héllo", timeout=5.0)
        assert outcome.stdout == "a\nb\nhéllo"

    @pytest.mark.asyncio
    async def test_stderr_captured(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("echo oops >&2; sleep 0.1", timeout=5.0)
        assert outcome.stderr == "oops"
        assert outcome.stdout == ""

    @pytest.mark.asyncio
    async def test_environment_persists_between_calls(self, bash_session: ShellSession) -> None:
        await bash_session.execute("export GREETING=hi", timeout=5.0)
        outcome = await bash_session.execute("echo $GREETING", timeout=5.0)
        assert outcome.stdout == "hi"

    @pytest.mark.asyncio
    async def test_env_overrides_applied(self, tmp_path) -> None:
        session = ShellSession("env", cwd=str(tmp_path), shell="/bin/bash", env={"RELAY_VAR": "42"})
        try:
            outcome = await session.execute("echo $RELAY_VAR", timeout=5.0)
            assert outcome.stdout == "42"
        finally:
            await session.kill()

    @pytest.mark.asyncio
    async def test_cd_updates_tracked_and_real_directory(
        self, bash_session: ShellSession, tmp_path
    ) -> None:
        (tmp_path / "sub").mkdir()
        await bash_session.execute("cd sub", timeout=5.0)
        assert bash_session.working_directory == str(tmp_path / "sub")
        pwd = await bash_session.probe_pwd()
        assert pwd is not None
        assert os.path.realpath(pwd) == os.path.realpath(tmp_path / "sub")

    @pytest.mark.asyncio
    async def test_syntax_error_keeps_shell_state(self, bash_session: ShellSession) -> None:
        await bash_session.execute("export KEEP=yes", timeout=5.0)
        pid = bash_session.pid
        broken = await bash_session.execute("echo )", timeout=5.0)
        assert bash_session.is_active
        outcome = await bash_session.execute("echo ${KEEP:-lost}", timeout=5.0)
        assert outcome.stdout == "yes"
        # the error text may land with either call depending on pipe timing
        stderr = broken.stderr + outcome.stderr
        assert "syntax error" in stderr
        assert "__COMMAND_" not in stderr
        assert bash_session.pid == pid

    @pytest.mark.asyncio
    async def test_background_command(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("sleep 0.1 &", timeout=5.0)
        assert outcome.success is True
        assert outcome.stderr == ""
        assert bash_session.is_active

    @pytest.mark.asyncio
    async def test_trailing_comment(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("echo hi # greet", timeout=5.0)
        assert outcome.success is True
        assert outcome.stdout == "hi"

    @pytest.mark.asyncio
    async def test_multiline_command(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("greet() {\n  echo \"hi $1\"\n}\ngreet there", timeout=5.0)
        assert outcome.stdout == "hi there"
        again = await bash_session.execute("greet again", timeout=5.0)
        assert again.stdout == "hi again"

    @pytest.mark.asyncio
    async def test_failing_command_still_succeeds_by_default(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("false", timeout=5.0)
        assert outcome.success is True
        assert outcome.exit_code == 0

    @pytest.mark.asyncio
    async def test_exit_status_tracking(self, tmp_path) -> None:
        session = ShellSession(
            "strict", cwd=str(tmp_path), shell="/bin/bash", track_exit_status=True
        )
        try:
            failed = await session.execute("false", timeout=5.0)
            assert failed.success is False
            assert failed.exit_code == 1
            passed = await session.execute("true", timeout=5.0)
            assert passed.success is True
        finally:
            await session.kill()

    @pytest.mark.asyncio
    async def test_timeout_returns_partial_output(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("echo started; sleep 0.5", timeout=0.2)
        assert outcome.success is False
        assert outcome.exit_code == -1
        assert outcome.stdout.startswith("started")
        assert outcome.stderr.endswith("Command timed out")
        assert bash_session.is_active

    @pytest.mark.asyncio
    async def test_late_output_surfaces_in_next_command(self, bash_session: ShellSession) -> None:
        await bash_session.execute("sleep 0.3; echo late", timeout=0.1)
        await asyncio.sleep(0.5)
        outcome = await bash_session.execute("echo next", timeout=5.0)
        assert outcome.success is True
        assert "late" in outcome.stdout
        assert outcome.stdout.endswith("next")

    @pytest.mark.asyncio
    async def test_empty_command(self, bash_session: ShellSession) -> None:
        outcome = await bash_session.execute("", timeout=5.0)
        assert outcome.success is True
        assert outcome.stdout == ""

    @pytest.mark.asyncio
    async def test_execute_stamps_last_activity(self, bash_session: ShellSession) -> None:
        before = bash_session.last_activity
        await asyncio.sleep(0.01)
        await bash_session.execute("true", timeout=5.0)
        assert bash_session.last_activity > before


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_execute_starts_uninitialized_session(self, tmp_path) -> None:
        session = ShellSession("lazy", cwd=str(tmp_path), shell="/bin/bash")
        try:
            outcome = await session.execute("echo up", timeout=5.0)
            assert outcome.stdout == "up"
            assert session.state is SessionState.RUNNING
            assert session.pid is not None
        finally:
            await session.kill()

    @pytest.mark.asyncio
    async def test_shell_exit_marks_inactive_and_restarts(self, bash_session: ShellSession) -> None:
        old_pid = bash_session.pid
        outcome = await bash_session.execute("exit 3", timeout=5.0)
        assert outcome.success is False
        assert outcome.exit_code == 3
        assert bash_session.state is SessionState.INACTIVE
        assert bash_session.status().pid is None

        again = await bash_session.execute("echo back", timeout=5.0)
        assert again.stdout == "back"
        assert bash_session.state is SessionState.RUNNING
        assert bash_session.pid != old_pid

    @pytest.mark.asyncio
    async def test_restart_keeps_tracked_directory(self, bash_session: ShellSession, tmp_path) -> None:
        (tmp_path / "keep").mkdir()
        await bash_session.execute("cd keep", timeout=5.0)
        await bash_session.execute("exit 0", timeout=5.0)
        outcome = await bash_session.execute("pwd", timeout=5.0)
        assert os.path.realpath(outcome.stdout) == os.path.realpath(tmp_path / "keep")

    @pytest.mark.asyncio
    async def test_kill_resolves_in_flight_command(self, bash_session: ShellSession) -> None:
        task = asyncio.create_task(bash_session.execute("echo begin; sleep 2", timeout=30.0))
        await asyncio.sleep(0.2)
        await bash_session.kill()
        outcome = await asyncio.wait_for(task, timeout=5.0)
        assert outcome.success is False
        assert "closed" in (outcome.error or "")
        assert bash_session.state is SessionState.KILLED

    @pytest.mark.asyncio
    async def test_kill_is_idempotent(self, bash_session: ShellSession) -> None:
        await bash_session.kill()
        await bash_session.kill()
        assert bash_session.state is SessionState.KILLED
        assert bash_session.pid is None

    @pytest.mark.asyncio
    async def test_initialize_replaces_running_process(self, bash_session: ShellSession) -> None:
        old_pid = bash_session.pid
        await bash_session.initialize()
        assert bash_session.pid != old_pid
        outcome = await bash_session.execute("echo fresh", timeout=5.0)
        assert outcome.stdout == "fresh"

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path) -> None:
        session = ShellSession("broken", cwd=str(tmp_path), shell="/nonexistent/shell")
        with pytest.raises(ProcessSpawnFailure) as exc_info:
            await session.initialize()
        assert exc_info.value.session_id == "broken"
        assert session.state is SessionState.INACTIVE

    @pytest.mark.asyncio
    async def test_missing_cwd_is_spawn_failure(self, tmp_path) -> None:
        session = ShellSession("nowhere", cwd=str(tmp_path / "missing"), shell="/bin/bash")
        with pytest.raises(ProcessSpawnFailure):
            await session.execute("echo hi", timeout=5.0)
