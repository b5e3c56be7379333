"""Shared pytest fixtures for crm-sync tests."""

from typing import Any, Callable

import pytest

from crm_sync.config import Config
from crm_sync.core.client import RemoteResult
from crm_sync.store.memory import MemoryStore


class FakeRemoteClient:
    """Minimal RemoteClient replacement for testing.

    Each method name maps to a ``RemoteResult``, an exception to raise or a
    callable receiving the request params.  Unscripted methods answer with
    an empty list.
    """

    def __init__(self, handlers: dict[str, Any] | None = None) -> None:
        self.handlers: dict[str, Any] = dict(handlers or {})
        self.calls: list[tuple[str, dict]] = []

    def on(self, method: str, handler: Any) -> None:
        self.handlers[method] = handler

    def call(self, method: str, params: dict | None = None) -> RemoteResult:
        params = params or {}
        self.calls.append((method, params))
        handler = self.handlers.get(method)
        if handler is None:
            return RemoteResult(result=[], total=0)
        if isinstance(handler, RemoteResult):
            return handler
        if isinstance(handler, Exception):
            raise handler
        return handler(params)

    def calls_to(self, method: str) -> list[dict]:
        return [params for name, params in self.calls if name == method]

    def validate_connection(self) -> str:
        return "2026-01-01T00:00:00+00:00"


def paged_list(
    records: list[dict[str, Any]], page_size: int = 50
) -> Callable[[dict], RemoteResult]:
    """Handler serving *records* in pages, honouring ``start`` and ``filter``."""

    def handler(params: dict) -> RemoteResult:
        matching = [
            r
            for r in records
            if all(
                str(r.get(k)) == str(v)
                for k, v in (params.get("filter") or {}).items()
            )
        ]
        if params.get("order", {}).get("ID") == "DESC":
            matching = list(reversed(matching))
        start = params.get("start") or 0
        chunk = matching[start : start + page_size]
        end = start + page_size
        return RemoteResult(
            result=chunk,
            total=len(matching),
            next=end if end < len(matching) else None,
        )

    return handler


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        webhook_url="https://crm.example.com/rest/1/abc123",
        front_url="https://front.example.com",
        token="upload-token",
        insecure=False,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def fake_client():
    return FakeRemoteClient()
