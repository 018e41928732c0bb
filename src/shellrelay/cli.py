"""Command-line interface for shellrelay.

Provides the main entry point for starting the server and for calling
its tools from a shell.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="shellrelay",
        description="Persistent shell sessions for remote callers",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/shellrelay.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    tools_parser = subparsers.add_parser("tools", help="List the tools offered by a running server")
    tools_parser.add_argument("--url", type=str, default=None, help="Server base URL")

    call_parser = subparsers.add_parser("call", help="Call one tool on a running server")
    call_parser.add_argument("name", type=str, help="Tool name, e.g. execute_command")
    call_parser.add_argument(
        "-a", "--arg",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Tool argument; VALUE is parsed as JSON when possible (repeatable)",
    )
    call_parser.add_argument(
        "--json",
        type=str,
        default=None,
        dest="json_args",
        help="All tool arguments as one JSON object",
    )
    call_parser.add_argument("--url", type=str, default=None, help="Server base URL")

    return parser.parse_args(argv)


def build_arguments(pairs: list[str], json_args: str | None = None) -> dict:
    """Merge ``--json`` and ``--arg KEY=VALUE`` options into one dict."""
    arguments = json.loads(json_args) if json_args else {}
    if not isinstance(arguments, dict):
        raise ValueError("--json must be a JSON object")
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        try:
            arguments[key] = json.loads(value)
        except json.JSONDecodeError:
            arguments[key] = value
    return arguments


async def _list_tools(settings, url: str | None) -> int:
    from shellrelay.client import TerminalClient

    async with TerminalClient(base_url=url or settings.client.base_url, timeout=settings.client.timeout) as client:
        for tool in await client.list_tools():
            required = tool.get("inputSchema", {}).get("required", [])
            print(f"{tool['name']}: {tool.get('description', '')}")
            if required:
                print(f"  required: {', '.join(required)}")
    return 0


async def _call_tool(settings, args: argparse.Namespace) -> int:
    from shellrelay.client import TerminalClient

    arguments = build_arguments(args.arg, args.json_args)
    async with TerminalClient(base_url=args.url or settings.client.base_url, timeout=settings.client.timeout) as client:
        result = await client.call_tool(args.name, arguments)
    print(result.text)
    return 1 if result.is_error else 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the shellrelay CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from shellrelay.client import ClientError
    from shellrelay.config.settings import load_settings
    from shellrelay.utils.logging import setup_logging

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        logger.info("Starting terminal server")
        from shellrelay.endpoint.server import create_app
        import uvicorn
        ep = settings.endpoint
        uvicorn.run(
            create_app(settings=settings),
            host=args.host or ep.host,
            port=args.port or ep.port,
        )
        return

    try:
        if args.command == "tools":
            code = asyncio.run(_list_tools(settings, args.url))
        else:
            code = asyncio.run(_call_tool(settings, args))
    except (ClientError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
