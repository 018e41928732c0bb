"""Operation dispatch for the terminal tools.

Each operation takes a structured argument object and returns textual
content plus an ``isError`` flag. Every error raised while handling one
call is converted into an ``Error: ...`` response here, so a bad request
can never take the hosting process down.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shellrelay.config.settings import SessionConfig
from shellrelay.domain.models import CommandOutcome, SessionStatus
from shellrelay.terminal.errors import TerminalError, UnknownOperation
from shellrelay.terminal.oneshot import OneShotExecutor
from shellrelay.terminal.registry import SessionRegistry
from shellrelay.terminal.session import ShellSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------


class CreateTerminalArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = Field(default=None, description="Optional terminal ID (auto-generated if not provided)")
    cwd: str | None = Field(default=None, description="Starting working directory (default: current directory)")
    shell: str | None = Field(default=None, description="Shell to use (default: system default)")
    shell_args: list[str] | None = Field(
        default=None, alias="shellArgs", description="Arguments passed to the shell"
    )
    env: dict[str, str] | None = Field(default=None, description="Additional environment variables")


class ExecuteCommandArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    command: str = Field(description="Command to execute")
    terminal_id: str | None = Field(
        default=None, description="Terminal session ID (default: the shared default session)"
    )
    timeout: int | None = Field(default=None, gt=0, description="Timeout in milliseconds (default: 30000)")
    use_persistent_shell: bool = Field(
        default=True, description="Use persistent shell session (default: true)"
    )


class TerminalIdArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    terminal_id: str = Field(description="Terminal session ID")


class NoArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: list[TextContent]
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> ToolResponse:
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @property
    def joined_text(self) -> str:
        return "\n".join(item.text for item in self.content)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_outcome(
    command: str,
    working_directory: str,
    outcome: CommandOutcome,
    terminal_id: str | None = None,
    pwd: str | None = None,
) -> str:
    lines = []
    if terminal_id is not None:
        lines.append(f"Terminal: {terminal_id}")
    lines.append(f"Command: {command}")
    lines.append(f"Working Directory: {working_directory}")
    lines.append(f"Exit Code: {outcome.exit_code}")
    if pwd is not None:
        lines.append(f"PWD: {pwd}")
    output = "\n".join(lines) + "\n\n"
    if outcome.stdout:
        output += f"STDOUT:\n{outcome.stdout}\n"
    if outcome.stderr:
        output += f"STDERR:\n{outcome.stderr}\n"
    if outcome.error:
        output += f"ERROR: {outcome.error}\n"
    return output


def format_status(status: SessionStatus) -> str:
    return (
        f"ID: {status.id}\n"
        f"Status: {'Active' if status.is_active else 'Inactive'}\n"
        f"State: {status.state.value}\n"
        f"Working Directory: {status.working_directory}\n"
        f"Shell: {status.shell}\n"
        f"PID: {status.pid or 'N/A'}\n"
        f"Last Activity: {status.last_activity.isoformat()}\n"
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


Handler = Callable[[Any], Awaitable[ToolResponse]]


class ToolDispatcher:
    """Routes named operations to the session registry.

    Example usage::

        dispatcher = ToolDispatcher(SessionRegistry())
        response = await dispatcher.call("create_terminal", {"id": "s1", "cwd": "/tmp"})
        response = await dispatcher.call(
            "execute_command", {"terminal_id": "s1", "command": "echo hello"}
        )
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: SessionConfig | None = None,
        oneshot: OneShotExecutor | None = None,
    ) -> None:
        self.registry = registry
        self._config = config or SessionConfig()
        self._oneshot = oneshot or OneShotExecutor(output_limit=self._config.oneshot_output_limit)
        self._tools: dict[str, tuple[str, type[BaseModel], Handler]] = {
            "create_terminal": (
                "Create a new terminal session",
                CreateTerminalArgs,
                self._create_terminal,
            ),
            "execute_command": (
                "Execute a command in a terminal session. Without terminal_id the "
                "shared default session is used, or a one-shot process when "
                "use_persistent_shell is false",
                ExecuteCommandArgs,
                self._execute_command,
            ),
            "list_terminals": ("List all terminal sessions", NoArgs, self._list_terminals),
            "close_terminal": (
                "Close a specific terminal session",
                TerminalIdArgs,
                self._close_terminal,
            ),
            "close_all_terminals": (
                "Close all terminal sessions",
                NoArgs,
                self._close_all_terminals,
            ),
            "get_terminal_status": (
                "Get status information for a specific terminal",
                TerminalIdArgs,
                self._get_terminal_status,
            ),
            "reset_shell": (
                "Reset the default shell session",
                NoArgs,
                self._reset_shell,
            ),
        }

    def list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "description": description,
                "inputSchema": model.model_json_schema(by_alias=True),
            }
            for name, (description, model, _) in self._tools.items()
        ]

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResponse:
        """Run one operation and turn any failure into an error response."""
        try:
            try:
                _, model, handler = self._tools[name]
            except KeyError:
                raise UnknownOperation(name) from None
            args = model.model_validate(arguments or {})
            return await handler(args)
        except TerminalError as e:
            logger.info("Tool %s failed: %s", name, e)
            return ToolResponse.text(f"Error: {e}", is_error=True)
        except ValidationError as e:
            return ToolResponse.text(f"Error: invalid arguments for {name}: {e}", is_error=True)
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return ToolResponse.text(f"Error: {e}", is_error=True)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _timeout_seconds(self, timeout_ms: int | None) -> float:
        return (timeout_ms or self._config.default_timeout_ms) / 1000.0

    async def _probe_pwd(self, session: ShellSession) -> str | None:
        if not self._config.report_shell_pwd:
            return None
        return await session.probe_pwd(self._config.pwd_probe_timeout)

    async def _create_terminal(self, args: CreateTerminalArgs) -> ToolResponse:
        session = self.registry.create(
            args.id, cwd=args.cwd, shell=args.shell, shell_args=args.shell_args, env=args.env
        )
        await session.initialize()
        text = (
            f"Terminal session '{session.id}' created successfully\n"
            f"Working Directory: {session.working_directory}\n"
            f"Shell: {session.shell}\n"
            f"PID: {session.pid or 'N/A'}"
        )
        pwd = await self._probe_pwd(session)
        if pwd is not None:
            text += f"\nPWD: {pwd}"
        return ToolResponse.text(text)

    async def _execute_command(self, args: ExecuteCommandArgs) -> ToolResponse:
        timeout = self._timeout_seconds(args.timeout)
        if args.terminal_id is not None:
            session = self.registry.get(args.terminal_id)
        else:
            session = self.registry.get_or_create(DEFAULT_SESSION_ID)
            if not args.use_persistent_shell:
                return await self._execute_oneshot(session, args.command, timeout)

        outcome = await session.execute(args.command, timeout=timeout)
        pwd = await self._probe_pwd(session) if outcome.success else None
        text = format_outcome(
            args.command, session.working_directory, outcome, terminal_id=args.terminal_id, pwd=pwd
        )
        return ToolResponse.text(text, is_error=not outcome.success)

    async def _execute_oneshot(
        self, session: ShellSession, command: str, timeout: float
    ) -> ToolResponse:
        session.last_activity = datetime.now()
        session.track(command)
        outcome = await self._oneshot.run(
            command, cwd=session.working_directory, env=session.environment, timeout=timeout
        )
        text = format_outcome(command, session.working_directory, outcome)
        return ToolResponse.text(text, is_error=not outcome.success)

    async def _list_terminals(self, args: NoArgs) -> ToolResponse:
        statuses = self.registry.list()
        if not statuses:
            return ToolResponse.text("No active terminal sessions")
        output = "Active Terminal Sessions:\n\n"
        for status in statuses:
            output += format_status(status) + "---\n"
        return ToolResponse.text(output)

    async def _close_terminal(self, args: TerminalIdArgs) -> ToolResponse:
        closed = await self.registry.close(args.terminal_id)
        if closed:
            return ToolResponse.text(f"Terminal session '{args.terminal_id}' closed successfully")
        return ToolResponse.text(f"Terminal session '{args.terminal_id}' not found", is_error=True)

    async def _close_all_terminals(self, args: NoArgs) -> ToolResponse:
        count = await self.registry.close_all()
        return ToolResponse.text(f"Closed {count} terminal session(s)")

    async def _get_terminal_status(self, args: TerminalIdArgs) -> ToolResponse:
        status = self.registry.get(args.terminal_id).status()
        return ToolResponse.text(f"Terminal Status: {status.id}\n" + format_status(status))

    async def _reset_shell(self, args: NoArgs) -> ToolResponse:
        await self.registry.close(DEFAULT_SESSION_ID)
        self.registry.create(DEFAULT_SESSION_ID, cwd=self._config.cwd or os.getcwd())
        return ToolResponse.text("Shell session reset successfully")
