"""Error types raised by the terminal session subsystem."""

from __future__ import annotations


class TerminalError(Exception):
    """Base class for all terminal session errors."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionNotFound(TerminalError):
    """Raised when a session id is not present in the registry."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Terminal session '{session_id}' not found", session_id)


class DuplicateSessionId(TerminalError):
    """Raised when creating a session whose id is already registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Terminal session '{session_id}' already exists", session_id)


class UnknownOperation(TerminalError):
    """Raised when a caller names an operation that does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ProcessSpawnFailure(TerminalError):
    """Raised when the shell process for a session cannot be started."""

    def __init__(self, session_id: str, shell: str, reason: str) -> None:
        super().__init__(
            f"Failed to start shell '{shell}' for terminal '{session_id}': {reason}",
            session_id,
        )
        self.shell = shell
        self.reason = reason


class CommandTimeout(TerminalError):
    """A command did not report completion before its deadline.

    Never raised out of ``ShellSession.execute``; it becomes the error
    text of a failed outcome that still carries the partial output.
    """

    def __init__(self, timeout: float, session_id: str | None = None) -> None:
        super().__init__(f"Command timed out after {timeout:g}s", session_id)
        self.timeout = timeout


class ProcessExitedUnexpectedly(TerminalError):
    """The shell process went away while a command was in flight."""

    def __init__(
        self,
        session_id: str,
        returncode: int | None = None,
        reason: str | None = None,
    ) -> None:
        if reason is None:
            reason = f"shell process exited with code {returncode}"
        super().__init__(f"Terminal '{session_id}': {reason}", session_id)
        self.returncode = returncode
        self.reason = reason
