"""Error response builders for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention.
"""

from datetime import datetime, timezone

import mcp.types as types

from ...core.client import RemoteApiError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            remote_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def format_epoch_ms(value: int | None) -> str:
    """Epoch milliseconds as ``YYYY-MM-DD HH:MM`` UTC, or ``never``."""
    if value is None:
        return "never"
    dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M")


def translate_remote_error(error: RemoteApiError) -> types.CallToolResult:
    """Map a CRM error payload to a structured error response."""
    match error.code.upper():
        case "QUERY_LIMIT_EXCEEDED" | "OPERATION_TIME_LIMIT":
            action = "The CRM is throttling requests; wait a minute and retry."
        case "INVALID_CREDENTIALS" | "NO_AUTH_FOUND" | "EXPIRED_TOKEN":
            action = "Check the webhook URL and its access token (CRM_WEBHOOK_URL)."
        case "ACCESS_DENIED" | "INSUFFICIENT_SCOPE":
            action = "Grant the webhook the crm and user scopes."
        case "ERROR_METHOD_NOT_FOUND":
            action = "Check the mapping's remote type (e.g. crm.lead, crm.company)."
        case _:
            action = "Retry later or check the CRM service status."
    return build_error_response("remote_error", str(error), action)
