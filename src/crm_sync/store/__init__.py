"""Target document stores.

``base`` defines the protocols the sync engine depends on; ``memory`` and
``json_store`` are the bundled implementations.
"""

from .base import (
    Document,
    DocumentNotFoundError,
    DocumentStore,
    DuplicateDocumentError,
    StoreError,
    Transaction,
    TransactionError,
    generate_id,
    now_ms,
)
from .json_store import JsonFileStore
from .memory import MemoryStore, MemoryTransaction

__all__ = [
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "DuplicateDocumentError",
    "JsonFileStore",
    "MemoryStore",
    "MemoryTransaction",
    "StoreError",
    "Transaction",
    "TransactionError",
    "generate_id",
    "now_ms",
]
