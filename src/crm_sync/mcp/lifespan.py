"""Lifespan management for MCP server startup and shutdown."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests
from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.blobs import BlobUploader, HttpBlobProvider
from ..core.client import RemoteClient
from ..store.json_store import JsonFileStore

logger = logging.getLogger(__name__)

MAX_PARALLEL_REQUESTS = 2


@dataclass
class SyncRuntime:
    """Everything a tool handler needs, built once at startup.

    ``sync_lock`` serializes sync runs: concurrent runs against one store
    are not supported.
    """

    config: Config
    unified: UnifiedConfig
    client: RemoteClient
    store: JsonFileStore
    uploader: BlobUploader
    blob_provider: HttpBlobProvider
    sync_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def build_runtime(config: Config, unified: UnifiedConfig) -> SyncRuntime:
    """Create client, store and blob helpers for a validated config."""
    session = requests.Session()
    session.verify = not config.insecure
    return SyncRuntime(
        config=config,
        unified=unified,
        client=RemoteClient(config),
        store=JsonFileStore(Path(config.store_path)),
        uploader=BlobUploader(config.front_url, config.token, config.insecure),
        blob_provider=HttpBlobProvider(session),
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[SyncRuntime]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present (remote fallbacks, sync settings, mappings)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Validate the CRM connection (fail fast when unreachable)
    - Open the document store and build the blob helpers

    Args:
        config_overrides: Optional dict with CLI values (webhook_url,
            front_url, token, insecure).

    Yields:
        The initialized ``SyncRuntime``.

    Raises:
        RuntimeError: If configuration is invalid or the CRM is unreachable.
    """
    logger.info("MCP server starting...")
    _stderr_print("CRM Sync MCP Server starting...")

    try:
        # .env first so ${VAR} interpolation in YAML can see its values
        load_dotenv()

        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        remote_fallbacks = {
            k: v for k, v in unified.remote.model_dump().items() if v is not None
        }
        sync_fallbacks = unified.sync.model_dump(exclude={"mappings"})

        overrides = config_overrides or {}
        config = load_config(
            webhook_url=overrides.get("webhook_url"),
            front_url=overrides.get("front_url"),
            token=overrides.get("token"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=remote_fallbacks,
            sync_fallbacks=sync_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        _stderr_print(f"  Mappings: {', '.join(unified.sync.mappings) or 'none'}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure CRM_WEBHOOK_URL, CRM_FRONT_URL, CRM_TOKEN are set."
        ) from e

    logger.info("Validating CRM connection...")
    _stderr_print("  Validating CRM connection...")
    try:
        runtime = build_runtime(config, unified)
        server_time = await run_sync(runtime.client.validate_connection)
        logger.info("Connected to CRM (server time %s)", server_time)
        _stderr_print(f"  Connected to CRM (server time {server_time})")
        init_semaphore(MAX_PARALLEL_REQUESTS)
        _stderr_print(f"  Document store: {config.store_path}")
        _stderr_print("Server ready. Waiting for MCP client connection...")
    except Exception as e:
        logger.error("Failed to connect to CRM: %s", e)
        _stderr_print("ERROR: CRM connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"CRM connection failed: {e}. Check CRM_WEBHOOK_URL."
        ) from e

    yield runtime

    logger.info("MCP server shutting down")
    _stderr_print("CRM Sync MCP Server shutting down.")
