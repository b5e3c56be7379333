"""Tests for mcp/tools/errors.py -- error response builders and utilities.

Covers:
- build_error_response() structure and format
- translate_remote_error() mapping of CRM error codes
- format_epoch_ms() for sync timestamps
"""

import mcp.types as types
import pytest

from crm_sync.core.client import RemoteApiError
from crm_sync.mcp.tools.errors import (
    build_error_response,
    format_epoch_ms,
    translate_remote_error,
)


def _get_error_text(result: types.CallToolResult) -> str:
    """Extract text from first content item with type narrowing for Pyright."""
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# build_error_response tests
# ---------------------------------------------------------------------------


class TestBuildErrorResponse:
    """Tests for build_error_response()."""

    def test_is_error_flag(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True

    def test_single_text_content(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert len(result.content) == 1
        assert result.content[0].type == "text"

    def test_error_format(self):
        """Text format is 'Error ({type}): {message}\\n\\nAction: {action}'."""
        result = build_error_response(
            "not_found", "Mapping missing", "Use a configured mapping"
        )
        assert (
            _get_error_text(result)
            == "Error (not_found): Mapping missing\n\nAction: Use a configured mapping"
        )


# ---------------------------------------------------------------------------
# translate_remote_error tests
# ---------------------------------------------------------------------------


class TestTranslateRemoteError:
    """Tests for translate_remote_error()."""

    @pytest.mark.parametrize(
        "code, expected",
        [
            ("QUERY_LIMIT_EXCEEDED", "throttling"),
            ("OPERATION_TIME_LIMIT", "throttling"),
            ("INVALID_CREDENTIALS", "CRM_WEBHOOK_URL"),
            ("expired_token", "CRM_WEBHOOK_URL"),
            ("ACCESS_DENIED", "scopes"),
            ("INSUFFICIENT_SCOPE", "scopes"),
            ("ERROR_METHOD_NOT_FOUND", "remote type"),
            ("SOMETHING_ELSE", "Retry later"),
        ],
    )
    def test_corrective_action(self, code, expected):
        result = translate_remote_error(RemoteApiError(code, "details"))

        text = _get_error_text(result)
        assert text.startswith("Error (remote_error):")
        assert expected in text
        assert result.isError is True

    def test_message_carries_code_and_description(self):
        result = translate_remote_error(
            RemoteApiError("ACCESS_DENIED", "Access denied!")
        )
        assert "ACCESS_DENIED: Access denied!" in _get_error_text(result)


# ---------------------------------------------------------------------------
# format_epoch_ms tests
# ---------------------------------------------------------------------------


class TestFormatEpochMs:
    def test_none_is_never(self):
        assert format_epoch_ms(None) == "never"

    def test_utc_minutes(self):
        assert format_epoch_ms(1704164645000) == "2024-01-02 03:04"

    def test_epoch_zero(self):
        assert format_epoch_ms(0) == "1970-01-01 00:00"
