"""HTTP client for a remote shellrelay server.

Example usage::

    async with TerminalClient(base_url="http://127.0.0.1:8765") as client:
        await client.call_tool("create_terminal", {"id": "build", "cwd": "/tmp"})
        result = await client.call_tool(
            "execute_command", {"terminal_id": "build", "command": "make"}
        )
        print(result.text)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Parsed ``/tools/call`` response."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        return "\n".join(item.get("text", "") for item in self.content if item.get("type") == "text")


class TerminalClient:
    """Calls terminal tools on a shellrelay server."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8765",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the HTTP client and verify server connectivity."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            resp = await self._client.get("/health")
            resp.raise_for_status()
            logger.info("Connected to server at %s", self._base_url)
        except Exception as e:
            await self._client.aclose()
            self._client = None
            raise ClientError(f"Failed to connect to server: {e}") from e

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from server")

    async def list_tools(self) -> list[dict[str, Any]]:
        resp = await self._request("GET", "/tools")
        return resp.json().get("tools", [])

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Call one tool. Tool-level failures come back with ``is_error`` set."""
        resp = await self._request("POST", "/tools/call", {"name": name, "arguments": arguments or {}})
        result = ToolResult.model_validate(resp.json())
        logger.debug("Tool %s -> isError=%s", name, result.is_error)
        return result

    async def _request(self, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        if self._client is None:
            raise ClientError("Not connected to server")
        try:
            resp = await self._client.request(method, path, json=payload)
            resp.raise_for_status()
            return resp
        except httpx.HTTPError as e:
            raise ClientError(f"HTTP request to {path} failed: {e}") from e

    async def __aenter__(self) -> TerminalClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()


class ClientError(Exception):
    """Raised when the server cannot be reached or answers with an HTTP error."""
