"""FastAPI HTTP server exposing the terminal tools.

    GET  /health      -> {"status": "ok", "sessions": 2, "active_sessions": 1}
    GET  /tools       -> {"tools": [{"name": ..., "description": ..., "inputSchema": ...}]}
    POST /tools/call  <- {"name": "execute_command", "arguments": {"command": "ls"}}
                      -> {"content": [{"type": "text", "text": ...}], "isError": false}

The application owns one ``SessionRegistry``. Its idle sweep starts with
the app and every session is closed when the app shuts down.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from shellrelay.config.settings import Settings
from shellrelay.endpoint.tools import ToolDispatcher
from shellrelay.terminal.registry import SessionRegistry

logger = logging.getLogger(__name__)


class ToolCallRequest(BaseModel):
    name: str = Field(description="Operation name, e.g. 'execute_command'")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Operation arguments")


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int = 0
    active_sessions: int = 0
    sweeping: bool = False


def create_app(
    registry: SessionRegistry | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        registry: Optional pre-built registry (for testing).
        settings: Application settings; defaults are used if omitted.
    """
    settings = settings or Settings()
    registry = registry or SessionRegistry(config=settings.sessions)
    dispatcher = ToolDispatcher(registry, config=settings.sessions)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        registry.start_sweeper()
        logger.info("Terminal server started")
        yield
        # Shutdown
        await registry.stop_sweeper()
        await registry.close_all()
        logger.info("Terminal server stopped")

    app = FastAPI(
        title="shellrelay",
        description="Persistent shell sessions over HTTP",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.registry = registry
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health_check() -> HealthResponse:
        statuses = registry.list()
        return HealthResponse(
            sessions=len(statuses),
            active_sessions=sum(1 for s in statuses if s.is_active),
            sweeping=registry.sweeping,
        )

    @app.get("/tools")
    async def list_tools() -> dict[str, list[dict[str, Any]]]:
        return {"tools": dispatcher.list_tools()}

    @app.post("/tools/call")
    async def call_tool(request: ToolCallRequest) -> dict[str, Any]:
        logger.debug("Tool call %s %s", request.name, request.arguments)
        response = await dispatcher.call(request.name, request.arguments)
        return response.model_dump(by_alias=True)

    return app


def main() -> None:
    """Entry point for running the server standalone."""
    settings = Settings()
    uvicorn.run(create_app(settings=settings), host=settings.endpoint.host, port=settings.endpoint.port)


if __name__ == "__main__":
    main()
