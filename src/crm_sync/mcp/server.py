"""MCP Server for CRM synchronization using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents trigger and inspect CRM-to-document-store synchronization.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import setup_logging
from ..version import check_version_consistency
from .lifespan import SyncRuntime, server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("crm-sync")

# Initialized in main()
_runtime: SyncRuntime | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool
# ---------------------------------------------------------------------------


async def _handle_ping(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test CRM connectivity."""
    try:
        server_time = await run_sync(runtime.client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"CRM sync server connected successfully. Server time: {server_time}",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"CRM connection failed: {e}. Check CRM_WEBHOOK_URL.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test CRM connectivity and return the CRM server time",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_runtime() -> SyncRuntime:
    """Get the global SyncRuntime.

    Raises:
        RuntimeError: If the server lifespan has not started.
    """
    if _runtime is None:
        raise RuntimeError(
            "SyncRuntime not initialized. Server lifespan not started."
        )
    return _runtime


def set_runtime(runtime: SyncRuntime | None) -> None:
    global _runtime
    _runtime = runtime


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List all registered tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    runtime = get_runtime()
    try:
        return await get_registry().call_tool(name, arguments, runtime)
    except ValueError as e:
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), validates the
    CRM connection via the lifespan manager and serves JSON-RPC over stdio.

    Args:
        config_overrides: Optional dict with CLI values (webhook_url,
            front_url, token, insecure, debug, log_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs)
    logger.info("Registered %d tools", registry.tool_count())
    set_registry(registry)

    # set_runtime() is called here rather than inside the lifespan so
    # that `python -m crm_sync.mcp.server` updates this module's global
    # and not a second copy imported under the package name.
    async with server_lifespan(config_overrides=config_overrides) as runtime:
        set_runtime(runtime)
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="crm-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_runtime(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CRM Sync - MCP server synchronizing CRM records into a document store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .crm_sync/config.yml)
  crm-sync-mcp

  # Override the REST webhook
  crm-sync-mcp --webhook-url https://crm.example.com/rest/1/abc123

  # Use with insecure SSL (development only)
  crm-sync-mcp --insecure

  # Custom log file location
  crm-sync-mcp --log-file /var/log/crm-sync.log

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--webhook-url",
        help="Override CRM REST webhook URL (takes precedence over CRM_WEBHOOK_URL and config files)",
    )
    parser.add_argument(
        "--front-url",
        help="Override blob upload service URL (takes precedence over CRM_FRONT_URL)",
    )
    parser.add_argument(
        "--token",
        help="Override blob upload token (visible in process list -- prefer CRM_TOKEN)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/crm-sync.log",
        help="Log file path (default: /tmp/crm-sync.log)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"crm-sync version {__version__}",
    )
    return parser


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    config_overrides = {}
    if args.webhook_url:
        config_overrides["webhook_url"] = args.webhook_url
    if args.front_url:
        config_overrides["front_url"] = args.front_url
    if args.token:
        config_overrides["token"] = args.token
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file

    if config_overrides:
        override_keys = [k for k in config_overrides if k != "token"]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Already reported on stderr by the lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
