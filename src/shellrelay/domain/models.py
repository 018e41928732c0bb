"""Core domain models for the shellrelay system.

These models describe what flows out of the terminal subsystem: the
lifecycle state of a session, the outcome of one executed command, and
the status snapshot reported for each registered session.
"""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    """Lifecycle state of a shell session.

    UNINITIALIZED -> RUNNING -> (INACTIVE | KILLED). An INACTIVE or
    UNINITIALIZED session is started again on its next execute.
    """

    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    INACTIVE = "inactive"  # Process exited or failed to spawn
    KILLED = "killed"  # Closed explicitly


# ---------------------------------------------------------------------------
# Command / Session Models
# ---------------------------------------------------------------------------


class CommandOutcome(BaseModel):
    """Result of running one command in a shell.

    Produced per call and never retained by the session.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = Field(description="Whether the command completed normally")
    stdout: str = Field(default="", description="Captured standard output, markers removed")
    stderr: str = Field(default="", description="Captured standard error")
    exit_code: int = Field(
        default=0,
        description="0 on success, -1 on timeout, otherwise a process exit code",
    )
    error: str | None = Field(default=None, description="Human-readable failure reason")
    duration_ms: float = Field(default=0.0, ge=0.0, description="Wall time until resolution")

    @property
    def timed_out(self) -> bool:
        return self.exit_code == -1 and not self.success


class SessionStatus(BaseModel):
    """Point-in-time snapshot of a registered session."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Session identifier")
    state: SessionState = Field(description="Lifecycle state")
    working_directory: str = Field(description="Tracked working directory (best effort)")
    shell: str = Field(description="Shell program")
    pid: int | None = Field(default=None, description="Process id, if a process is running")
    created_at: datetime = Field(description="When the session was registered")
    last_activity: datetime = Field(description="Start of the most recent command")

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.RUNNING
