"""Tests for SessionRegistry bookkeeping and the idle sweep."""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timedelta

import pytest

from shellrelay.domain.models import SessionState
from shellrelay.terminal.errors import DuplicateSessionId, SessionNotFound
from shellrelay.terminal.registry import SessionRegistry

requires_bash = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/bash"),
    reason="needs a POSIX bash",
)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_registers_without_starting(self, registry: SessionRegistry, tmp_path) -> None:
        session = registry.create("s1", cwd=str(tmp_path))
        assert "s1" in registry
        assert len(registry) == 1
        assert session.state is SessionState.UNINITIALIZED
        assert session.working_directory == str(tmp_path)
        assert session.shell == "/bin/bash"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected_without_side_effects(self, registry: SessionRegistry) -> None:
        original = registry.create("dup")
        with pytest.raises(DuplicateSessionId):
            registry.create("dup")
        assert registry.get("dup") is original
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_generated_ids_skip_taken_ones(self, registry: SessionRegistry) -> None:
        registry.create("terminal_1")
        generated = registry.create()
        assert generated.id == "terminal_2"
        assert registry.create().id == "terminal_3"

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, registry: SessionRegistry) -> None:
        with pytest.raises(SessionNotFound) as exc_info:
            registry.get("ghost")
        assert str(exc_info.value) == "Terminal session 'ghost' not found"

    @pytest.mark.asyncio
    async def test_get_or_create_reuses(self, registry: SessionRegistry) -> None:
        first = registry.get_or_create("default")
        assert registry.get_or_create("default") is first
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_list_follows_creation_order(self, registry: SessionRegistry) -> None:
        for name in ("c", "a", "b"):
            registry.create(name)
        assert [status.id for status in registry.list()] == ["c", "a", "b"]


class TestClose:
    @pytest.mark.asyncio
    async def test_close_unknown_returns_false(self, registry: SessionRegistry) -> None:
        assert await registry.close("ghost") is False

    @requires_bash
    @pytest.mark.asyncio
    async def test_close_kills_running_session(self, registry: SessionRegistry, tmp_path) -> None:
        session = registry.create("live", cwd=str(tmp_path))
        await session.initialize()
        assert await registry.close("live") is True
        assert "live" not in registry
        assert session.state is SessionState.KILLED
        assert session.pid is None

    @requires_bash
    @pytest.mark.asyncio
    async def test_close_all(self, registry: SessionRegistry, tmp_path) -> None:
        started = registry.create("one", cwd=str(tmp_path))
        await started.initialize()
        registry.create("two")
        assert await registry.close_all() == 2
        assert len(registry) == 0
        assert await registry.close_all() == 0


class TestEviction:
    @pytest.mark.asyncio
    async def test_idle_sessions_evicted(self, registry: SessionRegistry) -> None:
        stale = registry.create("stale")
        stale.last_activity = datetime.now() - timedelta(hours=2)
        registry.create("fresh")
        evicted = await registry.evict_idle()
        assert evicted == ["stale"]
        assert "fresh" in registry
        assert stale.state is SessionState.KILLED

    @pytest.mark.asyncio
    async def test_inactive_sessions_evicted_regardless_of_age(self, registry: SessionRegistry) -> None:
        dead = registry.create("dead")
        dead.state = SessionState.INACTIVE
        assert await registry.evict_idle() == ["dead"]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_recent_uninitialized_session_kept(self, registry: SessionRegistry) -> None:
        registry.create("new")
        assert await registry.evict_idle(timedelta(minutes=5)) == []
        assert "new" in registry

    @pytest.mark.asyncio
    async def test_sweeper_runs_periodically(self, registry: SessionRegistry) -> None:
        registry.create("old").last_activity = datetime.now() - timedelta(minutes=10)
        registry.start_sweeper(interval=0.05, max_age=timedelta(minutes=1))
        assert registry.sweeping is True
        await asyncio.sleep(0.3)
        assert "old" not in registry

    @pytest.mark.asyncio
    async def test_sweeper_start_is_idempotent_and_stoppable(self, registry: SessionRegistry) -> None:
        registry.start_sweeper(interval=60)
        task = registry._sweeper
        registry.start_sweeper(interval=60)
        assert registry._sweeper is task
        await registry.stop_sweeper()
        assert registry.sweeping is False
        await registry.stop_sweeper()
