"""Registry of shell sessions keyed by id.

The registry owns every session: it creates them, hands them out by id,
closes them, and runs a periodic sweep that evicts sessions that are
inactive or have been idle for too long. It is an explicit object passed
to whoever needs it; the server creates one at startup and closes all of
its sessions at shutdown.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timedelta

from shellrelay.config.settings import SessionConfig
from shellrelay.domain.models import SessionState, SessionStatus
from shellrelay.terminal.errors import DuplicateSessionId, SessionNotFound
from shellrelay.terminal.session import ShellSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session ids to ``ShellSession`` objects.

    Iteration and ``list()`` follow creation order.
    """

    def __init__(self, config: SessionConfig | None = None) -> None:
        self._config = config or SessionConfig()
        self._sessions: dict[str, ShellSession] = {}
        self._ids = itertools.count(1)
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _next_id(self) -> str:
        while True:
            session_id = f"terminal_{next(self._ids)}"
            if session_id not in self._sessions:
                return session_id

    def create(
        self,
        session_id: str | None = None,
        cwd: str | None = None,
        shell: str | None = None,
        shell_args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> ShellSession:
        """Register a new session without starting its process.

        Raises:
            DuplicateSessionId: If ``session_id`` is already registered.
        """
        if session_id is None:
            session_id = self._next_id()
        elif session_id in self._sessions:
            raise DuplicateSessionId(session_id)

        cfg = self._config
        session = ShellSession(
            session_id,
            cwd=cwd or cfg.cwd,
            shell=shell or cfg.shell,
            shell_args=shell_args if shell_args is not None else cfg.shell_args,
            env=env,
            track_exit_status=cfg.track_exit_status,
            kill_grace_period=cfg.kill_grace_period,
            max_backlog_chars=cfg.max_backlog_chars,
        )
        self._sessions[session_id] = session
        logger.info("Registered terminal %s (shell=%s, cwd=%s)", session_id, session.shell, session.working_directory)
        return session

    def get(self, session_id: str) -> ShellSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None

    def get_or_create(self, session_id: str) -> ShellSession:
        if session_id in self._sessions:
            return self._sessions[session_id]
        return self.create(session_id)

    def list(self) -> list[SessionStatus]:
        return [session.status() for session in self._sessions.values()]

    async def close(self, session_id: str) -> bool:
        """Kill a session's process and drop it. Returns whether it existed."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.kill()
        logger.info("Closed terminal %s", session_id)
        return True

    async def close_all(self) -> int:
        """Kill and drop every session. Returns how many were closed."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(session.kill() for session in sessions))
        if sessions:
            logger.info("Closed %d terminal session(s)", len(sessions))
        return len(sessions)

    async def evict_idle(self, max_age: timedelta | None = None) -> list[str]:
        """Drop sessions that are INACTIVE or idle for longer than ``max_age``.

        A session in the middle of a command has a recent ``last_activity``
        (it is stamped at call start) and is left alone unless the command
        itself has been running longer than ``max_age``. A session that
        was registered but never started (UNINITIALIZED) is not treated as
        inactive; it goes only once its creation time is older than
        ``max_age``.

        Returns:
            The ids that were evicted.
        """
        if max_age is None:
            max_age = timedelta(minutes=self._config.max_idle_minutes)
        now = datetime.now()
        stale = [
            session_id
            for session_id, session in self._sessions.items()
            if session.state is SessionState.INACTIVE or now - session.last_activity > max_age
        ]
        evicted = [self._sessions.pop(session_id) for session_id in stale]
        await asyncio.gather(*(session.kill() for session in evicted))
        if stale:
            logger.info("Cleaned up %d inactive terminal session(s): %s", len(stale), ", ".join(stale))
        return stale

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(
        self,
        interval: float | None = None,
        max_age: timedelta | None = None,
    ) -> None:
        """Start the periodic idle sweep on the running event loop.

        Args:
            interval: Seconds between sweeps. Defaults to the configured
                      ``sweep_interval_minutes``.
            max_age: Idle age passed to ``evict_idle``.
        """
        if self.sweeping:
            return
        if interval is None:
            interval = self._config.sweep_interval_minutes * 60.0
        self._sweeper = asyncio.create_task(self._sweep_loop(interval, max_age))
        logger.info("Idle sweep every %.0fs", interval)

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self, interval: float, max_age: timedelta | None) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evict_idle(max_age)
            except Exception as e:
                logger.error("Idle sweep failed: %s", e)
