import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

import requests

from ..config import Config

logger = logging.getLogger(__name__)

# HTTP statuses the CRM uses for throttling
_RETRY_STATUSES = frozenset({429, 503})


class RemoteApiError(Exception):
    """The CRM answered with an error payload."""

    def __init__(self, code: str, description: str = "") -> None:
        self.code = code
        self.description = description
        super().__init__(f"{code}: {description}" if description else code)


@dataclass
class RemoteResult:
    """One RPC response.

    Attributes:
        result: Method payload (list for ``*.list`` methods).
        total: Total number of records behind a list method.
        next: Cursor of the next page; ``None`` on the last page.
    """

    result: Any
    total: int | None = None
    next: int | None = None


class RemoteClient:
    """JSON RPC client for a CRM REST webhook.

    ``call("crm.lead.list", {...})`` POSTs to ``<webhook_url>/crm.lead.list.json``.
    Each worker thread gets its own ``requests.Session``.
    """

    def __init__(
        self,
        config: Config,
        max_retries: int = 3,
        min_backoff: float = 0.5,
        max_backoff: float = 10.0,
    ):
        self.config = config
        self.max_retries = max_retries
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        return session

    def _method_url(self, method: str) -> str:
        return f"{self.config.webhook_url.rstrip('/')}/{method}.json"

    def _retry_delay(self, response: requests.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                return self.min_backoff
        return min(self.max_backoff, self.min_backoff * (2**attempt))

    def call(self, method: str, params: dict[str, Any] | None = None) -> RemoteResult:
        """Invoke one remote method.

        Raises:
            RemoteApiError: The response carried an ``error`` field.
            requests.HTTPError: Non-retryable HTTP failure, or retries
                exhausted.
        """
        url = self._method_url(method)
        session = self._get_session()

        for attempt in range(self.max_retries + 1):
            response = session.post(url, json=params or {}, timeout=(10, 60))
            if (
                response.status_code in _RETRY_STATUSES
                and attempt < self.max_retries
            ):
                delay = self._retry_delay(response, attempt)
                logger.warning(
                    "%s throttled (HTTP %d), retrying in %.1fs",
                    method,
                    response.status_code,
                    delay,
                )
                time.sleep(delay)
                continue
            break

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {}
        if isinstance(payload, dict) and payload.get("error"):
            raise RemoteApiError(
                str(payload["error"]), payload.get("error_description", "")
            )
        response.raise_for_status()
        if not isinstance(payload, dict):
            payload = {"result": payload}

        return RemoteResult(
            result=payload.get("result"),
            total=payload.get("total"),
            next=payload.get("next"),
        )

    def validate_connection(self) -> str:
        """Call ``server.time``; returns the remote server time."""
        reply = self.call("server.time")
        return str(reply.result) if reply.result is not None else ""
