"""Tests for ToolSpec and ToolRegistry.

Covers:
- ToolSpec creation and immutability
- ToolRegistry list_tools, tool_count, duplicate detection
- call_tool dispatch and error translation
"""

import dataclasses
from unittest.mock import MagicMock

import mcp.types as types
import pytest

from crm_sync.core.client import RemoteApiError
from crm_sync.mcp.tools import ALL_SPECS
from crm_sync.mcp.tools.registry import ToolRegistry, ToolSpec


def _make_spec(name: str, handler=None) -> ToolSpec:
    """Helper to create a ToolSpec for testing."""
    if handler is None:

        async def handler(runtime, args):
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=f"ok:{name}")]
            )

    return ToolSpec(
        tool=types.Tool(
            name=name,
            description=f"Test tool {name}",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        handler=handler,
    )


def _raising(exc: Exception) -> ToolSpec:
    async def handler(runtime, args):
        raise exc

    return _make_spec("boom", handler)


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


class TestToolSpec:
    def test_creation(self):
        spec = _make_spec("test_tool")
        assert spec.tool.name == "test_tool"
        assert spec.handler is not None

    def test_frozen(self):
        spec = _make_spec("test_tool")
        with pytest.raises(dataclasses.FrozenInstanceError):
            spec.tool = None


class TestToolRegistry:
    def test_list_tools_in_registration_order(self):
        registry = ToolRegistry([_make_spec("a"), _make_spec("b")])
        assert [t.name for t in registry.list_tools()] == ["a", "b"]
        assert registry.tool_count() == 2

    def test_duplicate_name_rejected(self):
        with pytest.raises(ValueError, match="Duplicate tool name: a"):
            ToolRegistry([_make_spec("a"), _make_spec("a")])

    def test_sync_specs_register(self):
        registry = ToolRegistry(ALL_SPECS)
        names = {t.name for t in registry.list_tools()}
        assert names == {"crm_sync", "crm_sync_status"}


class TestCallTool:
    async def test_dispatches_with_runtime_and_args(self):
        seen = {}

        async def handler(runtime, args):
            seen["runtime"] = runtime
            seen["args"] = args
            return types.CallToolResult(
                content=[types.TextContent(type="text", text="done")]
            )

        runtime = MagicMock()
        registry = ToolRegistry([_make_spec("t", handler)])

        result = await registry.call_tool("t", None, runtime)

        assert _text(result) == "done"
        assert seen == {"runtime": runtime, "args": {}}

    async def test_unknown_tool_raises(self):
        registry = ToolRegistry([_make_spec("a")])
        with pytest.raises(ValueError, match="Unknown tool: nope"):
            await registry.call_tool("nope", {}, MagicMock())

    async def test_remote_error_translated(self):
        registry = ToolRegistry(
            [_raising(RemoteApiError("QUERY_LIMIT_EXCEEDED", "slow down"))]
        )

        result = await registry.call_tool("boom", {}, MagicMock())

        assert result.isError is True
        assert _text(result).startswith("Error (remote_error):")

    async def test_value_error_is_validation_error(self):
        registry = ToolRegistry([_raising(ValueError("limit must be positive"))])

        result = await registry.call_tool("boom", {}, MagicMock())

        assert result.isError is True
        assert _text(result) == (
            "Error (validation_error): limit must be positive\n\n"
            "Action: Check parameter values and retry."
        )

    async def test_unexpected_error_is_server_error(self):
        registry = ToolRegistry([_raising(KeyError("x"))])

        result = await registry.call_tool("boom", {}, MagicMock())

        assert result.isError is True
        assert "Error (server_error):" in _text(result)
