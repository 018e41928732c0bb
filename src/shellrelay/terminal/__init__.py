"""Terminal session subsystem.

Public API:
    ShellSession -- One persistent shell process plus its tracked state
    SessionRegistry -- Id -> session mapping with idle eviction
    OneShotExecutor -- Fresh-process execution for non-persistent calls
    track_directory -- Best-effort ``cd`` tracker
"""

from shellrelay.terminal.errors import (
    CommandTimeout,
    DuplicateSessionId,
    ProcessExitedUnexpectedly,
    ProcessSpawnFailure,
    SessionNotFound,
    TerminalError,
    UnknownOperation,
)
from shellrelay.terminal.oneshot import OneShotExecutor
from shellrelay.terminal.registry import SessionRegistry
from shellrelay.terminal.session import ShellSession
from shellrelay.terminal.tracker import DirectoryTracker, track_directory

__all__ = [
    "CommandTimeout",
    "DirectoryTracker",
    "DuplicateSessionId",
    "OneShotExecutor",
    "ProcessExitedUnexpectedly",
    "ProcessSpawnFailure",
    "SessionNotFound",
    "SessionRegistry",
    "ShellSession",
    "TerminalError",
    "UnknownOperation",
    "track_directory",
]
