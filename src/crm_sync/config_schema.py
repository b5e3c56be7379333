"""Unified configuration schema for crm_sync.

Defines Pydantic models for the config file sections: remote CRM
connection, synchronization settings (including entity mappings) and
logging.  Includes an adapter to the flat ``Config`` dataclass used at
runtime.

Usage:
    from crm_sync.config_schema import (
        UnifiedConfig, build_config, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    legacy = to_legacy_config(unified, cli_overrides={"webhook_url": "https://..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_SYNC_PERIOD_MS = 1000 * 60 * 60 * 24

ORGANIZATION_TYPE = "crm.company"
CONTACT_TYPE = "crm.contact"


# ---------------------------------------------------------------------------
# Entity mappings
# ---------------------------------------------------------------------------


class FieldMapping(BaseModel):
    """How one remote field lands on the target document.

    Attributes:
        attribute: Target field name in ``Document.data``.
        remote_field: Remote record key (e.g. ``TITLE``, ``UF_CRM_123``).
        kind: ``field`` copies the value; ``tags`` turns it into tag
            references; ``files`` turns remote file values into
            attachments.
        label: Optional human-readable name.
    """

    attribute: str
    remote_field: str
    kind: Literal["field", "tags", "files"] = "field"
    label: str | None = None

    model_config = {"frozen": True}


class EntityMapping(BaseModel):
    """Mapping of one remote entity type onto one target document class.

    Attributes:
        type: Remote entity type (``crm.lead``, ``crm.company``, ...).
            ``<type>.list`` is the paginated list method.
        of_class: Target document class.
        comments: Download timeline comments and activities.
        fields: Field mappings applied by the converter.
    """

    type: str
    of_class: str
    comments: bool = False
    fields: list[FieldMapping] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_organization(self) -> bool:
        return self.type == ORGANIZATION_TYPE


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote CRM and upload endpoint settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    webhook_url: str | None = Field(
        default=None, description="CRM REST webhook base URL"
    )
    front_url: str | None = Field(
        default=None, description="Target platform URL for blob uploads"
    )
    token: str | None = Field(
        default=None, description="Bearer token for blob uploads"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Synchronization run settings and entity mappings."""

    store_path: str = Field(
        default=".crm_sync/store.json",
        description="JSON document store location",
    )
    space: str = Field(
        default="crm:space:Default",
        description="Target space for synced documents",
    )
    limit: int = Field(
        default=50,
        ge=1,
        le=100000,
        description="Records accepted per run (1-100000)",
    )
    direction: Literal["ASC", "DESC"] = Field(
        default="ASC", description="Remote ID sort direction"
    )
    sync_period_ms: int = Field(
        default=DEFAULT_SYNC_PERIOD_MS,
        ge=0,
        description="Minimum time between re-syncs of one record",
    )
    error_backoff: float = Field(
        default=1.0,
        ge=0,
        description="Seconds to sleep after a failed record",
    )
    mappings: dict[str, EntityMapping] = Field(default_factory=dict)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def find_mapping(self, name: str) -> EntityMapping | None:
        """Look a mapping up by config key, falling back to remote type."""
        if name in self.sync.mappings:
            return self.sync.mappings[name]
        for mapping in self.sync.mappings.values():
            if mapping.type == name:
                return mapping
        return None


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Flatten a ``UnifiedConfig`` into the runtime ``Config`` dataclass.

    Precedence: CLI override > unified config value > default.

    CLI overrides dict keys: webhook_url, front_url, token, insecure, debug.

    Returns:
        ``Config`` instance (NOT validated -- run ``validate_config()``).
    """
    # config.py imports this module
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        webhook_url=overrides.get("webhook_url")
        or unified.remote.webhook_url
        or "",
        front_url=overrides.get("front_url")
        or unified.remote.front_url
        or "",
        token=overrides.get("token") or unified.remote.token or "",
        insecure=overrides.get("insecure", False)
        or unified.remote.insecure,
        debug=overrides.get("debug", False) or unified.remote.debug,
        store_path=unified.sync.store_path,
        space=unified.sync.space,
        page_limit=unified.sync.limit,
        sync_period_ms=unified.sync.sync_period_ms,
        error_backoff=unified.sync.error_backoff,
    )
