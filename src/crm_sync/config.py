"""Runtime configuration for the CRM synchronizer.

Reads remote connection and sync settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    CRM_WEBHOOK_URL: CRM REST webhook base URL (required)
    CRM_FRONT_URL: Target platform URL used for blob uploads (required)
    CRM_TOKEN: Bearer token for blob uploads (required)
    CRM_INSECURE: Skip SSL verification (optional, default: false)
    CRM_DEBUG: Enable debug mode (optional, default: false)
    CRM_STORE_PATH: JSON document store file (optional)
    CRM_SPACE: Target space for synced documents (optional)
    CRM_PAGE_LIMIT: Records accepted per run (optional, default: 50)
    CRM_SYNC_PERIOD_MS: Re-sync suppression window (optional, default: 24h)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .config_schema import DEFAULT_SYNC_PERIOD_MS

logger = logging.getLogger(__name__)


@dataclass
class Config:
    webhook_url: str
    front_url: str
    token: str
    insecure: bool = False
    debug: bool = False
    store_path: str = ".crm_sync/store.json"
    space: str = "crm:space:Default"
    page_limit: int = 50
    sync_period_ms: int = DEFAULT_SYNC_PERIOD_MS
    error_backoff: float = 1.0


def _validate_url(value: str, name: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {name} '{value}': must start with http:// or https://"
        )
    if not urlparse(value).hostname:
        raise ValueError(
            f"Invalid {name} '{value}': URL must include a hostname"
        )
    return value.removesuffix("/")


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.  URLs are normalized in place
            (whitespace and trailing slash stripped).

    Raises:
        ValueError: If a URL is malformed, the token is empty or a numeric
            setting is out of range.
    """
    config.webhook_url = _validate_url(config.webhook_url, "webhook URL")
    config.front_url = _validate_url(config.front_url, "front URL")

    if not config.token.strip():
        raise ValueError(
            "Upload token cannot be empty. Set CRM_TOKEN environment variable."
        )

    if not (1 <= config.page_limit <= 100000):
        raise ValueError(
            f"Invalid page limit {config.page_limit}: must be between 1 and 100000"
        )

    if config.sync_period_ms < 0:
        raise ValueError(
            f"Invalid sync period {config.sync_period_ms}: must not be negative"
        )

    if config.error_backoff < 0:
        raise ValueError(
            f"Invalid error backoff {config.error_backoff}: must not be negative"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int | None) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    bounds = f"at least {low}" if high is None else f"between {low} and {high}"
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number {bounds}"
        ) from None
    if value < low or (high is not None and value > high):
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bounds}")
    return value


def load_config(
    webhook_url: str | None = None,
    front_url: str | None = None,
    token: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
    sync_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        webhook_url: Override webhook URL.
        front_url: Override upload front URL.
        token: Override upload token.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values from the YAML ``remote`` section.
        sync_fallbacks: Values from the YAML ``sync`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config is missing after checking all
            sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}
    sfb = sync_fallbacks or {}

    # --- String fields: CLI > env > YAML > error ---

    final_webhook = (
        webhook_url or os.getenv("CRM_WEBHOOK_URL") or fb.get("webhook_url")
    )
    if not final_webhook:
        raise ValueError(
            "CRM webhook URL not found. Set CRM_WEBHOOK_URL environment variable, "
            "pass --webhook-url CLI argument, or add 'webhook_url' to config.yml."
        )

    final_front = front_url or os.getenv("CRM_FRONT_URL") or fb.get("front_url")
    if not final_front:
        raise ValueError(
            "Front URL not found. Set CRM_FRONT_URL environment variable, "
            "pass --front-url CLI argument, or add 'front_url' to config.yml."
        )

    final_token = token or os.getenv("CRM_TOKEN") or fb.get("token")
    if not final_token:
        raise ValueError(
            "Upload token not found. Set CRM_TOKEN environment variable, "
            "pass --token CLI argument, or add 'token' to config.yml."
        )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("CRM_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("CRM_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Sync fields: env > YAML > default ---

    final_store = (
        os.getenv("CRM_STORE_PATH")
        or sfb.get("store_path")
        or ".crm_sync/store.json"
    )
    final_space = os.getenv("CRM_SPACE") or sfb.get("space") or "crm:space:Default"

    final_limit = _get_int_env("CRM_PAGE_LIMIT", 1, 100000)
    if final_limit is None:
        final_limit = int(sfb.get("limit", 50))

    final_period = _get_int_env("CRM_SYNC_PERIOD_MS", 0, None)
    if final_period is None:
        final_period = int(sfb.get("sync_period_ms", DEFAULT_SYNC_PERIOD_MS))

    config = Config(
        webhook_url=final_webhook,
        front_url=final_front,
        token=final_token.strip(),
        insecure=final_insecure,
        debug=final_debug,
        store_path=final_store,
        space=final_space,
        page_limit=final_limit,
        sync_period_ms=final_period,
        error_backoff=float(sfb.get("error_backoff", 1.0)),
    )

    validate_config(config)

    return config
