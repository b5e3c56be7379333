"""Remote CRM client, blob transfer and event-loop bridging."""

from .async_utils import run_sync
from .blobs import BlobData, BlobUploader, HttpBlobProvider
from .client import RemoteApiError, RemoteClient, RemoteResult

__all__ = [
    "BlobData",
    "BlobUploader",
    "HttpBlobProvider",
    "RemoteApiError",
    "RemoteClient",
    "RemoteResult",
    "run_sync",
]
