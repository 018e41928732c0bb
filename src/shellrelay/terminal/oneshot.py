"""One-shot command execution without a persistent shell.

Used when a caller turns persistent shells off. Each command runs in its
own short-lived shell with the tracked directory and environment of the
default session, so only the tracked ``cd`` survives between calls.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from collections.abc import Mapping

from shellrelay.domain.models import CommandOutcome
from shellrelay.terminal.errors import CommandTimeout

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"
# How long to collect output after the timed-out command was killed
KILL_DRAIN_TIMEOUT = 1.0


class OneShotExecutor:
    """Run a single command with ``asyncio.create_subprocess_shell``.

    On POSIX the shell leads its own process group, so a timeout kills
    every process the command started, not only the shell.
    """

    def __init__(self, output_limit: int = 1024 * 1024) -> None:
        self._output_limit = output_limit

    def _truncate(self, data: bytes) -> str:
        text = data.decode("utf-8", errors="replace")
        if len(text) > self._output_limit:
            return text[: self._output_limit] + "\n... (output truncated)"
        return text

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            if IS_WINDOWS:
                process.kill()
            else:
                os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    async def run(
        self,
        command: str,
        cwd: str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = 30.0,
    ) -> CommandOutcome:
        """Run ``command`` to completion, killing it on timeout.

        Returns:
            CommandOutcome with the real exit code of the command.
        """
        start_time = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                start_new_session=not IS_WINDOWS,
            )
        except OSError as e:
            # Missing or unreadable cwd
            return CommandOutcome(
                success=False,
                exit_code=127 if isinstance(e, FileNotFoundError) else 126,
                error=f"OS error: {e}",
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

        communicate = asyncio.ensure_future(process.communicate())
        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                asyncio.shield(communicate), timeout=timeout
            )
        except asyncio.TimeoutError:
            self._kill(process)
            try:
                stdout_data, stderr_data = await asyncio.wait_for(
                    communicate, timeout=KILL_DRAIN_TIMEOUT
                )
            except asyncio.TimeoutError:
                # A process outside the group still holds the pipes
                stdout_data, stderr_data = b"", b""
                logger.warning("One-shot output abandoned after kill: %s", command[:80])
            logger.debug("One-shot command killed after %ss: %s", timeout, command[:80])
            return CommandOutcome(
                success=False,
                stdout=self._truncate(stdout_data),
                stderr=self._truncate(stderr_data),
                exit_code=-1,
                error=str(CommandTimeout(timeout or 0.0)),
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

        exit_code = process.returncode if process.returncode is not None else -1
        return CommandOutcome(
            success=exit_code == 0,
            stdout=self._truncate(stdout_data),
            stderr=self._truncate(stderr_data),
            exit_code=exit_code,
            error=None if exit_code == 0 else f"Command failed with exit code {exit_code}",
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
