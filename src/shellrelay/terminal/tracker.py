"""Best-effort tracking of a session's working directory.

The tracker only looks at the literal command text and recognizes a
single ``cd <argument>`` pattern. It never asks the shell, so it drifts
from the real directory on ``cd $VAR``, ``pushd``, ``cd -``, command
substitution or a ``cd`` buried inside a chained command. The result is
a display aid, not an authority.
"""

from __future__ import annotations

import os
import re
from typing import Callable

# (current tracked path, command text) -> new tracked path
DirectoryTracker = Callable[[str, str], str]

_CD_PATTERN = re.compile(r"\s*cd\s+(.*)")


def _strip_quotes(argument: str) -> str:
    if len(argument) >= 2 and argument[0] == argument[-1] and argument[0] in "\"'":
        return argument[1:-1]
    return argument


def track_directory(cwd: str, command: str, home: str | None = None) -> str:
    """Return the tracked directory after ``command`` runs in ``cwd``.

    Args:
        cwd: The currently tracked directory.
        command: The literal command text sent to the shell.
        home: Home directory used for ``~`` expansion. Defaults to the
              home directory of the current user.

    Returns:
        The new tracked directory, or ``cwd`` unchanged when the command
        is not a plain ``cd``.
    """
    match = _CD_PATTERN.fullmatch(command)
    if match is None:
        return cwd

    target = _strip_quotes(match.group(1).strip())
    if os.path.isabs(target):
        return target

    if home is None:
        home = os.path.expanduser("~")

    if target == "..":
        return os.path.dirname(os.path.normpath(cwd))
    if target == "~":
        return home
    if target.startswith("~/"):
        return os.path.normpath(os.path.join(home, target[2:]))
    return os.path.abspath(os.path.join(cwd, target))

