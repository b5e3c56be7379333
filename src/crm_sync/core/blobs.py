"""Blob upload and download for synced attachments."""

from __future__ import annotations

import logging
import mimetypes
import threading
from dataclasses import dataclass

import requests

from .async_utils import run_sync

logger = logging.getLogger(__name__)


@dataclass
class BlobData:
    """Fetched attachment bytes."""

    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


class BlobUploader:
    """Uploads attachment bytes to the target platform's ``/files`` endpoint.

    Blocking; the merger calls it through ``run_sync``.
    """

    def __init__(self, front_url: str, token: str, insecure: bool = False):
        self.front_url = front_url.rstrip("/")
        self.token = token
        self.insecure = insecure
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.verify = not self.insecure
            session.headers["Authorization"] = f"Bearer {self.token}"
            self._thread_local.session = session
        return self._thread_local.session

    def upload(self, blob: BlobData) -> str | None:
        """POST *blob* as multipart ``file``.

        Returns:
            The blob reference from the response body on HTTP 200, else
            ``None``.

        Raises:
            requests.RequestException: Transport failure.
        """
        response = self._get_session().post(
            f"{self.front_url}/files",
            files={"file": (blob.name, blob.content, blob.content_type)},
            timeout=(10, 120),
        )
        if response.status_code != 200:
            logger.warning(
                "Upload of %s rejected: HTTP %d", blob.name, response.status_code
            )
            return None
        return response.text.strip()


class HttpBlobProvider:
    """Async blob-fetch provider that downloads file URLs over HTTP.

    Called as ``await provider(file_url, file_id, name)``.
    """

    def __init__(self, session: requests.Session | None = None):
        self.session = session or requests.Session()

    def _download(self, url: str, name: str) -> BlobData | None:
        response = self.session.get(url, timeout=(10, 120))
        if response.status_code != 200:
            logger.warning(
                "Download of %s failed: HTTP %d", url, response.status_code
            )
            return None
        content_type = (
            response.headers.get("Content-Type")
            or mimetypes.guess_type(name)[0]
            or "application/octet-stream"
        )
        return BlobData(
            name=name,
            content=response.content,
            content_type=content_type.split(";")[0].strip(),
        )

    async def __call__(self, url: str, file_id: str, name: str) -> BlobData | None:
        logger.debug("Fetching attachment %s from %s", file_id, url)
        return await run_sync(self._download, url, name)
