"""ToolSpec and ToolRegistry for MCP tool dispatch.

- ToolSpec: Immutable dataclass linking a Tool definition and an async
  handler with standardized signature (runtime, args) -> CallToolResult.
- ToolRegistry: Provides list_tools() and call_tool() dispatch with error
  translation.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import mcp.types as types

from ...core.client import RemoteApiError

if TYPE_CHECKING:
    from ..lifespan import SyncRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        handler: Async handler with signature (runtime, args) -> CallToolResult.
    """

    tool: types.Tool
    handler: Callable[[SyncRuntime, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs keyed by tool name."""

    def __init__(self, specs: list[ToolSpec]):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.tool.name in self._specs:
                raise ValueError(f"Duplicate tool name: {spec.tool.name}")
            self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        """Return number of registered tools."""
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        runtime: SyncRuntime,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        CRM error payloads, validation errors and unexpected exceptions are
        translated into structured CallToolResult responses.

        Raises:
            ValueError: If tool name is not registered.
        """
        from .errors import build_error_response, translate_remote_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(runtime, args)
        except RemoteApiError as e:
            logger.warning("CRM error in %s: %s", name, e)
            return translate_remote_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log and retry later.",
            )
