"""Persistent shell session.

Owns one long-running shell subprocess and its three pipes. Commands are
written to the shell's stdin and their completion is detected with the
marker protocol from ``shellrelay.terminal.protocol``. Output is read by
two background reader tasks that fan chunks out to every in-flight
command; a third task watches for the process exiting on its own.

Calls to ``execute`` on the same session are not serialized. Each call
listens to the same byte stream, so callers must await one command before
issuing the next. Output that arrives while nothing is listening (for
example the tail of a command that timed out) is kept in a bounded
backlog and shows up at the start of the next command's output.
"""

from __future__ import annotations

import asyncio
import codecs
import itertools
import logging
import os
import sys
from collections.abc import Mapping
from datetime import datetime
from types import MappingProxyType

from shellrelay.domain.models import CommandOutcome, SessionState, SessionStatus
from shellrelay.terminal.errors import ProcessExitedUnexpectedly, ProcessSpawnFailure
from shellrelay.terminal.protocol import (
    CompletionBuffer,
    CompletionMarker,
    PendingCommand,
    encode_command,
)
from shellrelay.terminal.tracker import DirectoryTracker, track_directory

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
# How long the exit watcher lets the readers drain after the process is gone
EXIT_DRAIN_TIMEOUT = 0.5
DEFAULT_MAX_BACKLOG_CHARS = 1_000_000

IS_WINDOWS = sys.platform == "win32"


def default_shell() -> str:
    return "cmd.exe" if IS_WINDOWS else "/bin/bash"


def default_shell_args(shell: str) -> list[str]:
    if os.path.basename(shell).lower().startswith("cmd"):
        return ["/Q"]
    return []


class ShellSession:
    """A caller-addressable handle bound to one shell process at a time.

    The session identity, tracked directory and environment snapshot
    survive process restarts; state that lived only inside a dead process
    (shell variables, functions) does not.

    Example usage::

        session = ShellSession("build", cwd="/tmp")
        outcome = await session.execute("echo hello", timeout=5.0)
        assert outcome.stdout == "hello"
        await session.kill()
    """

    def __init__(
        self,
        session_id: str,
        cwd: str | None = None,
        shell: str | None = None,
        shell_args: list[str] | None = None,
        env: Mapping[str, str] | None = None,
        *,
        tracker: DirectoryTracker = track_directory,
        track_exit_status: bool = False,
        kill_grace_period: float = 0.5,
        max_backlog_chars: int = DEFAULT_MAX_BACKLOG_CHARS,
    ) -> None:
        self.id = session_id
        self.working_directory = cwd or os.getcwd()
        self.shell = shell or default_shell()
        self.shell_args = list(shell_args) if shell_args is not None else default_shell_args(self.shell)
        self._environment = MappingProxyType({**os.environ, **(env or {})})
        self._tracker = tracker
        self._track_exit_status = track_exit_status
        self._kill_grace_period = kill_grace_period
        self._max_backlog_chars = max_backlog_chars
        self._windows = os.path.basename(self.shell).lower().startswith("cmd")

        self.state = SessionState.UNINITIALIZED
        self.created_at = datetime.now()
        self.last_activity = self.created_at

        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task[None]] = []
        self._watcher: asyncio.Task[None] | None = None
        self._pending: set[PendingCommand] = set()
        self._backlog = {"stdout": "", "stderr": ""}
        self._sequence = itertools.count(1)

    @property
    def environment(self) -> Mapping[str, str]:
        """Read-only environment snapshot taken at creation."""
        return self._environment

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def is_active(self) -> bool:
        return (
            self.state is SessionState.RUNNING
            and self._process is not None
            and self._process.returncode is None
        )

    def status(self) -> SessionStatus:
        return SessionStatus(
            id=self.id,
            state=self.state,
            working_directory=self.working_directory,
            shell=self.shell,
            pid=self.pid if self.is_active else None,
            created_at=self.created_at,
            last_activity=self.last_activity,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> ShellSession:
        """Spawn a fresh shell process, replacing any running one.

        Raises:
            ProcessSpawnFailure: If the shell cannot be started. The
                session is left INACTIVE and will retry on next use.
        """
        if self._process is not None:
            await self._shutdown_process(
                ProcessExitedUnexpectedly(self.id, reason="shell was restarted")
            )

        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                *self.shell_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_directory,
                env=dict(self._environment),
            )
        except OSError as e:
            self.state = SessionState.INACTIVE
            logger.error("Terminal %s failed to start %s: %s", self.id, self.shell, e)
            raise ProcessSpawnFailure(self.id, self.shell, str(e)) from e

        self._process = process
        self._backlog = {"stdout": "", "stderr": ""}
        self.state = SessionState.RUNNING
        self.last_activity = datetime.now()
        self._readers = [
            asyncio.create_task(self._read_stream(process.stdout, "stdout")),
            asyncio.create_task(self._read_stream(process.stderr, "stderr")),
        ]
        self._watcher = asyncio.create_task(self._watch_exit(process, list(self._readers)))

        if not self._windows:
            setup = 'export PS1=""\nexport PS2=""\n'
            if os.path.basename(self.shell).startswith("bash"):
                setup += "set +H\n"
            try:
                await self._write(setup)
            except ProcessExitedUnexpectedly as e:
                raise ProcessSpawnFailure(self.id, self.shell, e.reason) from e

        logger.info(
            "Started terminal %s: %s %s (pid=%d, cwd=%s)",
            self.id, self.shell, " ".join(self.shell_args), process.pid, self.working_directory,
        )
        return self

    async def kill(self) -> None:
        """Stop the shell process and resolve any in-flight command.

        Safe to call multiple times.
        """
        self.state = SessionState.KILLED
        if self._process is not None:
            await self._shutdown_process(
                ProcessExitedUnexpectedly(self.id, reason="terminal session was closed")
            )
            logger.info("Terminal %s killed", self.id)
        else:
            self._fail_pending(
                ProcessExitedUnexpectedly(self.id, reason="terminal session was closed")
            )

    async def _shutdown_process(self, error: ProcessExitedUnexpectedly) -> None:
        process = self._process
        self._process = None
        self._fail_pending(error)
        if process is None:
            return

        if process.returncode is None:
            try:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._kill_grace_period)
                except asyncio.TimeoutError:
                    process.kill()
                    await process.wait()
            except ProcessLookupError:
                pass

        tasks = [*self._readers]
        if self._watcher is not None:
            tasks.append(self._watcher)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._readers = []
        self._watcher = None

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    async def execute(self, command: str, timeout: float | None = 30.0) -> CommandOutcome:
        """Run ``command`` in the persistent shell.

        An inactive or never-started session is (re)initialized first.
        A timed-out command is not interrupted; the shell keeps running it.

        Args:
            command: Command line to run.
            timeout: Seconds to wait for the completion marker. None
                     waits indefinitely.

        Returns:
            The command outcome. Timeouts and unexpected process exits
            come back as failed outcomes rather than exceptions.

        Raises:
            ProcessSpawnFailure: If the shell had to be started and could not be.
        """
        if not self.is_active:
            await self.initialize()

        self.last_activity = datetime.now()
        marker = CompletionMarker.generate(self.id, next(self._sequence))
        buffer = CompletionBuffer(
            marker, stdout=self._backlog["stdout"], stderr=self._backlog["stderr"]
        )
        self._backlog = {"stdout": "", "stderr": ""}
        pending = PendingCommand(command, buffer, timeout, on_settled=self._pending.discard)
        self._pending.add(pending)

        line = encode_command(
            command, marker, windows=self._windows, detect_failure=self._track_exit_status
        )
        logger.debug("Terminal %s <- %s", self.id, line.rstrip())
        try:
            await self._write(line)
        except ProcessExitedUnexpectedly as e:
            pending.fail(e)
        else:
            self.track(command)
        return await pending.wait()

    def track(self, command: str) -> str:
        """Update the tracked directory for ``command`` and return it."""
        self.working_directory = self._tracker(self.working_directory, command)
        return self.working_directory

    async def probe_pwd(self, timeout: float = 5.0) -> str | None:
        """Ask the shell for its real working directory.

        Returns None when the shell did not answer in time.
        """
        outcome = await self.execute("cd" if self._windows else "pwd", timeout=timeout)
        if not outcome.success:
            return None
        lines = outcome.stdout.splitlines()
        return lines[-1].strip() if lines else None

    async def _write(self, text: str) -> None:
        process = self._process
        if process is None or process.stdin is None or process.returncode is not None:
            self.state = SessionState.INACTIVE
            raise ProcessExitedUnexpectedly(
                self.id, None if process is None else process.returncode
            )
        try:
            process.stdin.write(text.encode())
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self.state = SessionState.INACTIVE
            raise ProcessExitedUnexpectedly(
                self.id, process.returncode, f"could not write to shell: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _read_stream(self, stream: asyncio.StreamReader | None, channel: str) -> None:
        """Read one pipe until EOF and hand each chunk to the listeners."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._dispatch(channel, decoder.decode(chunk))
        self._dispatch(channel, decoder.decode(b"", final=True))

    def _dispatch(self, channel: str, text: str) -> None:
        if not text:
            return
        if not self._pending:
            backlog = self._backlog[channel] + text
            self._backlog[channel] = backlog[-self._max_backlog_chars:]
            return
        for pending in list(self._pending):
            if channel == "stdout":
                pending.on_stdout(text)
            else:
                pending.on_stderr(text)

    async def _watch_exit(
        self,
        process: asyncio.subprocess.Process,
        readers: list[asyncio.Task[None]],
    ) -> None:
        """Flip the session INACTIVE when its process exits on its own."""
        returncode = await process.wait()
        await asyncio.wait(readers, timeout=EXIT_DRAIN_TIMEOUT)
        if self._process is not process:
            # Killed or replaced; the owner already handled the pending calls
            return
        self.state = SessionState.INACTIVE
        logger.warning("Terminal %s exited with code %s", self.id, returncode)
        self._fail_pending(ProcessExitedUnexpectedly(self.id, returncode), returncode)

    def _fail_pending(self, error: ProcessExitedUnexpectedly, exit_code: int = -1) -> None:
        for pending in list(self._pending):
            pending.fail(error, exit_code=exit_code)
        self._pending.clear()
