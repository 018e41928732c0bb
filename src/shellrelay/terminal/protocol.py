"""Marker-based completion detection for commands sent to a live shell.

A persistent shell gives no framing around a command's output, so every
command is sent with a trailing ``echo`` of a one-shot marker. Output is
accumulated and the command counts as finished the moment the marker
shows up in the accumulated stdout. A deadline timer runs alongside;
whichever of {marker seen, deadline reached} happens first resolves the
command, and the other path becomes a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
import time
from dataclasses import dataclass
from typing import Callable

from shellrelay.domain.models import CommandOutcome
from shellrelay.terminal.errors import CommandTimeout, TerminalError

logger = logging.getLogger(__name__)

COMPLETE_PREFIX = "__COMMAND_COMPLETE_"
ERROR_PREFIX = "__COMMAND_ERROR_"
TIMEOUT_NOTICE = "Command timed out"

# Markers travel inside double quotes on POSIX and bare on cmd.exe
_UNSAFE_MARKER_CHARS = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class CompletionMarker:
    """The pair of tokens that end one command's output."""

    complete: str
    error: str

    @classmethod
    def generate(cls, session_id: str, sequence: int) -> CompletionMarker:
        """Build markers unique to one call.

        Args:
            session_id: Owning session; unsafe characters are replaced.
            sequence: Per-session counter, so two calls within the same
                      clock tick still differ.
        """
        tag = f"{_UNSAFE_MARKER_CHARS.sub('_', session_id)}_{time.time_ns()}_{sequence}"
        return cls(complete=f"{COMPLETE_PREFIX}{tag}__", error=f"{ERROR_PREFIX}{tag}__")

    @property
    def width(self) -> int:
        return max(len(self.complete), len(self.error))


def encode_command(
    command: str,
    marker: CompletionMarker,
    windows: bool = False,
    detect_failure: bool = False,
) -> str:
    """Wrap ``command`` with its marker echo and return the text to write.

    On POSIX the command travels as a single quoted ``eval`` argument, so
    its own syntax (errors, a trailing ``&``, comments) stays inside the
    eval and cannot swallow the marker or end the shell. The marker echo
    follows on its own line and runs whatever the exit status, so the
    outcome reports exit code 0. With ``detect_failure`` (always on for
    cmd.exe) a failing command echoes the error marker instead.
    """
    command = command.rstrip()
    if windows:
        if not command:
            return f"echo {marker.complete}\r\n"
        return f"{command} && echo {marker.complete} || echo {marker.error}\r\n"
    if not command:
        return f'echo "{marker.complete}"\n'
    quoted = shlex.quote(command)
    if detect_failure:
        return f'eval {quoted} && echo "{marker.complete}" || echo "{marker.error}"\n'
    return f'eval {quoted}\necho "{marker.complete}"\n'


class CompletionBuffer:
    """Accumulates one command's stdout and stderr.

    Buffers are append-only. The marker scan runs over the accumulated
    stdout, so a marker split across any number of chunks is still found;
    only the last ``marker.width - 1`` characters already scanned need to
    be looked at again.
    """

    def __init__(self, marker: CompletionMarker, stdout: str = "", stderr: str = "") -> None:
        self.marker = marker
        self._stdout: list[str] = [stdout] if stdout else []
        self._stderr: list[str] = [stderr] if stderr else []
        self._tail = ""
        self.complete = False
        self.failed = False

    @property
    def stdout(self) -> str:
        return "".join(self._stdout)

    @property
    def stderr(self) -> str:
        return "".join(self._stderr)

    def feed_stdout(self, text: str) -> bool:
        """Append a stdout chunk; return True once a marker has been seen."""
        self._stdout.append(text)
        if self.complete:
            return True
        window = self._tail + text
        if self.marker.complete in window:
            self.complete = True
        elif self.marker.error in window:
            self.complete = True
            self.failed = True
        self._tail = window[-(self.marker.width - 1):]
        return self.complete

    def feed_stderr(self, text: str) -> None:
        self._stderr.append(text)

    def unmarked(self) -> tuple[str, str]:
        """Return (stdout, stderr) with this call's markers removed."""
        stdout = self.stdout
        stderr = self.stderr
        for token in (self.marker.complete, self.marker.error):
            stdout = stdout.replace(token, "")
            stderr = stderr.replace(token, "")
        return stdout, stderr

    def cleaned(self) -> tuple[str, str]:
        """Return (stdout, stderr) with markers removed and trimmed."""
        stdout, stderr = self.unmarked()
        return stdout.strip(), stderr.strip()


class PendingCommand:
    """One in-flight command and its single resolver.

    The outcome future is resolved exactly once, by whichever comes first:
    the marker arriving, the deadline timer firing, or an explicit
    ``fail``/``cancel`` from the owning session. Every later attempt is
    ignored, and resolving always disarms the timer and detaches the
    listener through ``on_settled``.
    """

    def __init__(
        self,
        command: str,
        buffer: CompletionBuffer,
        timeout: float | None = 30.0,
        on_settled: Callable[[PendingCommand], None] | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        self.command = command
        self.buffer = buffer
        self.timeout = timeout
        self._on_settled = on_settled
        self._started = time.perf_counter()
        self._future: asyncio.Future[CommandOutcome] = loop.create_future()
        self._timer: asyncio.TimerHandle | None = None
        if timeout is not None:
            self._timer = loop.call_later(timeout, self._expire)

    @property
    def done(self) -> bool:
        return self._future.done()

    def on_stdout(self, text: str) -> None:
        if self.done:
            return
        seen = self.buffer.complete
        if not self.buffer.feed_stdout(text) or seen:
            return
        # stderr written just before the marker may still sit in the other
        # reader; settle on the next loop tick so it lands in this command
        asyncio.get_running_loop().call_soon(self._complete)

    def _complete(self) -> None:
        if self.done:
            return
        stdout, stderr = self.buffer.cleaned()
        if self.buffer.failed:
            self._settle(
                success=False, stdout=stdout, stderr=stderr, exit_code=1,
                error="Command failed",
            )
        else:
            self._settle(success=True, stdout=stdout, stderr=stderr, exit_code=0)

    def on_stderr(self, text: str) -> None:
        if not self.done:
            self.buffer.feed_stderr(text)

    def fail(self, error: TerminalError, exit_code: int = -1) -> bool:
        """Resolve as a failure carrying whatever output arrived so far."""
        stdout, stderr = self.buffer.unmarked()
        return self._settle(
            success=False,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            error=str(error),
        )

    def _expire(self) -> None:
        self._timer = None
        if self.done or self.buffer.complete:
            return
        logger.debug("Command timed out after %ss: %s", self.timeout, self.command[:80])
        stdout, stderr = self.buffer.unmarked()
        self._settle(
            success=False,
            stdout=stdout,
            stderr=f"{stderr}\n{TIMEOUT_NOTICE}",
            exit_code=-1,
            error=str(CommandTimeout(self.timeout or 0.0)),
        )

    def _settle(self, **fields: object) -> bool:
        if self.done:
            return False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        duration_ms = (time.perf_counter() - self._started) * 1000
        self._future.set_result(CommandOutcome(duration_ms=duration_ms, **fields))
        if self._on_settled is not None:
            self._on_settled(self)
        return True

    def cancel(self) -> None:
        """Disarm the timer and detach without producing an outcome."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self.done:
            self._future.cancel()
        if self._on_settled is not None:
            self._on_settled(self)

    async def wait(self) -> CommandOutcome:
        """Wait for the outcome. Cancelling the waiter disarms the command."""
        try:
            return await asyncio.shield(self._future)
        except asyncio.CancelledError:
            self.cancel()
            raise
