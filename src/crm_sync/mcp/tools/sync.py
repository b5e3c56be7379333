"""MCP tool handlers for CRM synchronization.

Defines two tools:

- ``crm_sync`` -- run one synchronization of a configured entity mapping.
- ``crm_sync_status`` -- summarize what the store holds for a mapping.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...sync.engine import SyncEngine, SyncOptions
from ...sync.models import SYNC_TRAIT
from ...sync.reporter import format_sync_report, report_to_json
from .errors import build_error_response, format_epoch_ms
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import SyncRuntime

logger = logging.getLogger(__name__)

MAX_LIMIT = 100000


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="crm_sync",
        description=(
            "Synchronize records of a configured CRM entity mapping into the "
            "document store. Records synced within the sync period are "
            "skipped; failed records are retried on the next run."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "mapping": {
                    "type": "string",
                    "description": "Mapping name from config, or its CRM entity type (e.g. crm.lead)",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_LIMIT,
                    "description": "Maximum number of records to accept (defaults to sync.limit)",
                },
                "direction": {
                    "type": "string",
                    "enum": ["ASC", "DESC"],
                    "description": "Remote ID order (defaults to sync.direction)",
                },
            },
            "required": ["mapping"],
        },
    ),
    types.Tool(
        name="crm_sync_status",
        description=(
            "Show how many documents of a mapping are tracked in the store "
            "and when the most recent one was synced."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "mapping": {
                    "type": "string",
                    "description": "Mapping name from config, or its CRM entity type",
                },
            },
            "required": ["mapping"],
        },
    ),
]


def _mapping_not_found(runtime: SyncRuntime, name: str) -> types.CallToolResult:
    available = ", ".join(sorted(runtime.unified.sync.mappings)) or "none"
    return build_error_response(
        "not_found",
        f"Mapping '{name}' not found in config.",
        f"Use one of the configured mappings: {available}.",
    )


def _parse_limit(runtime: SyncRuntime, args: dict[str, Any]) -> int:
    limit = args.get("limit")
    if limit is None:
        return runtime.config.page_limit
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValueError(f"limit must be an integer, got {limit!r}")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")
    return limit


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_crm_sync(
    runtime: SyncRuntime, args: dict[str, Any]
) -> types.CallToolResult:
    name = args.get("mapping")
    if not name:
        raise ValueError("mapping parameter is required")

    mapping = runtime.unified.find_mapping(name)
    if mapping is None:
        return _mapping_not_found(runtime, name)

    limit = _parse_limit(runtime, args)
    direction = args.get("direction") or runtime.unified.sync.direction
    if direction not in ("ASC", "DESC"):
        raise ValueError(f"direction must be ASC or DESC, got {direction!r}")

    def monitor(total: int) -> None:
        logger.debug("%s: %d remote records", mapping.type, total)

    options = SyncOptions(
        store=runtime.store,
        client=runtime.client,
        space=runtime.config.space,
        mapping=mapping,
        limit=limit,
        direction=direction,
        uploader=runtime.uploader,
        monitor=monitor,
        blob_provider=runtime.blob_provider,
        sync_period=runtime.config.sync_period_ms,
        all_mappings=list(runtime.unified.sync.mappings.values()),
        error_backoff=runtime.config.error_backoff,
    )

    async with runtime.sync_lock:
        report = await SyncEngine(options).run()

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_sync_report(report))],
        structuredContent=report_to_json(report),
        isError=report.error is not None,
    )


async def _handle_crm_sync_status(
    runtime: SyncRuntime, args: dict[str, Any]
) -> types.CallToolResult:
    name = args.get("mapping")
    if not name:
        raise ValueError("mapping parameter is required")

    mapping = runtime.unified.find_mapping(name)
    if mapping is None:
        return _mapping_not_found(runtime, name)

    documents = await runtime.store.find_all(
        mapping.of_class, {f"{SYNC_TRAIT}.remote_type": mapping.type}
    )
    last_sync: int | None = None
    for doc in documents:
        trait = await runtime.store.get_mixin(doc.id, SYNC_TRAIT) or {}
        sync_time = trait.get("sync_time")
        if sync_time is not None and (last_sync is None or sync_time > last_sync):
            last_sync = sync_time

    lines = [
        f"Sync status for '{mapping.type}' -> {mapping.of_class}",
        f"Tracked documents: {len(documents)}",
        f"Last sync: {format_epoch_ms(last_sync)}",
        f"Store: {runtime.config.store_path}",
    ]
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent={
            "mapping_type": mapping.type,
            "doc_class": mapping.of_class,
            "tracked": len(documents),
            "last_sync_time": last_sync,
        },
    )


# ---------------------------------------------------------------------------
# ToolSpec list for registry
# ---------------------------------------------------------------------------


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SYNC_TOOLS[0], handler=_handle_crm_sync),
    ToolSpec(tool=SYNC_TOOLS[1], handler=_handle_crm_sync_status),
]
