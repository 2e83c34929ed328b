"""Developer journal server - main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, TYPE_CHECKING

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from .config import JournalConfig, load_config
from .engine import JournalEngine
from .errors import JournalError
from .log import configure_logging
from .resources import list_resources as journal_resources
from .resources import read_resource as read_journal_resource
from .tools import execute_tool, make_tools

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def custom_tool_definition(tool_name: str, tool_func: Any) -> dict:
    """Describe a ``custom_tool_*`` function from a Python config as an MCP tool."""
    doc = tool_func.__doc__ or f"Custom tool: {tool_name}"
    return {
        "name": tool_name,
        "description": doc.strip().split("\n")[0],
        "inputSchema": {
            "type": "object",
            "properties": {
                "params": {
                    "type": "object",
                    "description": "Parameters for the custom tool",
                }
            },
        },
    }


def create_server(config: JournalConfig, engine: JournalEngine | None = None) -> Server:
    """Create and configure the MCP server.

    Args:
        config: Journal configuration
        engine: Engine to serve; one is created from ``config`` when omitted

    Returns:
        Configured MCP Server instance
    """
    server = Server("dev-journal")
    engine = engine or JournalEngine(config)
    tool_defs = make_tools(engine)

    for tool_name, tool_func in config.custom_tools.items():
        tool_defs[tool_name] = custom_tool_definition(tool_name, tool_func)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return list of available tools."""
        return [
            Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in tool_defs.values()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        result = await execute_tool(engine, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        return [
            Resource(
                uri=r["uri"],
                name=r["name"],
                description=r["description"],
                mimeType=r["mimeType"],
            )
            for r in journal_resources(engine)
        ]

    @server.read_resource()
    async def read_resource(uri: Any) -> str:
        try:
            return read_journal_resource(engine, str(uri))
        except JournalError as e:
            raise ValueError(e.message) from e

    return server


async def run_server(config: JournalConfig) -> None:
    """Run the MCP server with stdio transport."""
    engine = JournalEngine(config)
    server = create_server(config, engine)

    try:
        async with stdio_server() as (read_stream, write_stream):  # pragma: no cover
            await server.run(  # pragma: no cover
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        engine.close()


def create_http_app(config: JournalConfig) -> "FastAPI":
    from .api import create_app

    return create_app(JournalEngine(config))


def run_http(config: JournalConfig, host: str, port: int) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    app = create_http_app(config)
    logger.info("Serving HTTP API on http://%s:%d", host, port)
    try:
        uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    finally:
        app.state.engine.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Developer journal - commit entries, project summaries and portfolio content for AI agents"
    )
    parser.add_argument(
        "--project-root",
        "-p",
        type=Path,
        default=Path.cwd(),
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in project root)",
    )
    parser.add_argument(
        "--log-level",
        help="Log level (default: from config, INFO)",
    )

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument(
        "--init",
        action="store_true",
        help="Create or upgrade the journal database and exit",
    )
    modes.add_argument(
        "--backup",
        action="store_true",
        help="Write an SQL backup of the database and exit",
    )
    modes.add_argument(
        "--http",
        action="store_true",
        help="Serve the HTTP API instead of the MCP stdio server",
    )

    parser.add_argument("--host", help="HTTP host (default: from config, 127.0.0.1)")
    parser.add_argument("--port", type=int, help="HTTP port (default: from config, 3333)")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    project_root = args.project_root.resolve()

    try:
        config = load_config(project_root, args.config)
    except (ValueError, OSError, JournalError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.log_level:
        config.log_level = args.log_level
    configure_logging(config.log_level)

    if args.init:
        engine = JournalEngine(config)
        try:
            version = engine.db.schema_version()
        finally:
            engine.close()
        print(f"Initialized journal database at {config.get_db_path()} (schema v{version})")
        return

    if args.backup:
        engine = JournalEngine(config)
        try:
            result = engine.backup()
        except (OSError, JournalError) as e:
            print(f"Backup failed: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            engine.close()
        print(json.dumps(result, indent=2))
        return

    if args.http:
        run_http(config, args.host or config.http_host, args.port or config.http_port)
        return

    asyncio.run(run_server(config))


if __name__ == "__main__":  # pragma: no cover
    main()
