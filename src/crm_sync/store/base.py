"""Document store contracts.

The sync engine talks to the target document database only through the
``DocumentStore`` and ``Transaction`` protocols defined here.  Any backend
that offers the same coroutine methods can be plugged in; the package
ships ``MemoryStore`` and ``JsonFileStore``.

Query filters are plain dicts:

* ``{"attached_to": "abc"}`` -- equality on a document attribute
  (``id``, ``doc_class``, ``space``, ``attached_to``, ``attached_to_class``,
  ``collection``, ``modified_by``) or, failing that, on a ``data`` field.
* ``{"contact": {"$in": ["a", "b"]}}`` -- membership.
* ``{"crm:mixin:SyncDoc.remote_id": "42"}`` -- equality on a trait field;
  the key is ``<trait name>.<field>``.

Traits ("mixins") are stored beside documents, keyed by
``(document id, trait name)``, never inside ``Document.data``.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Protocol

from pydantic import BaseModel, Field


def generate_id() -> str:
    """Return a fresh document identity."""
    return uuid.uuid4().hex


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class Document(BaseModel):
    """A document in the target store.

    Attributes:
        id: Stable document identity.
        doc_class: Class/type tag (see ``DocClass``).
        space: Owning container.
        data: Typed fields supplied by conversion; the only part that is
            ever diffed.
        attached_to: Parent document id for attached sub-documents.
        attached_to_class: Parent document class.
        collection: Name of the parent collection holding this document.
        modified_on: Epoch milliseconds of the last modification.
        modified_by: Account id of the last modifier.
    """

    id: str = Field(default_factory=generate_id)
    doc_class: str
    space: str
    data: dict[str, Any] = Field(default_factory=dict)
    attached_to: str | None = None
    attached_to_class: str | None = None
    collection: str | None = None
    modified_on: int | None = None
    modified_by: str | None = None


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    """A write referenced a document that does not exist."""


class DuplicateDocumentError(StoreError):
    """A create used an identity that is already taken."""


class TransactionError(StoreError):
    """A transaction was used after it was committed or discarded."""


class DocumentWriter(Protocol):
    """Write operations shared by stores and transactions."""

    async def create_doc(
        self,
        doc_class: str,
        space: str,
        data: dict[str, Any],
        doc_id: str | None = None,
        modified_on: int | None = None,
        modified_by: str | None = None,
    ) -> str: ...

    async def add_collection(
        self,
        doc_class: str,
        space: str,
        attached_to: str,
        attached_to_class: str,
        collection: str,
        data: dict[str, Any],
        doc_id: str | None = None,
        modified_on: int | None = None,
        modified_by: str | None = None,
    ) -> str: ...

    async def update(
        self, doc: Document, update: dict[str, Any]
    ) -> None: ...

    async def remove(self, doc: Document) -> None: ...

    async def create_mixin(
        self,
        doc_id: str,
        doc_class: str,
        space: str,
        mixin: str,
        data: dict[str, Any],
    ) -> None: ...

    async def update_mixin(
        self,
        doc_id: str,
        doc_class: str,
        space: str,
        mixin: str,
        update: dict[str, Any],
    ) -> None: ...


class Transaction(DocumentWriter, Protocol):
    """Buffered batch of writes applied atomically by ``commit()``."""

    label: str

    async def commit(self) -> None: ...

    def discard(self) -> None: ...


class DocumentStore(DocumentWriter, Protocol):
    """Target document database.

    Write methods on the store itself apply immediately; ``apply()`` opens
    a ``Transaction`` whose writes only become visible on ``commit()``.
    """

    async def find_all(
        self, doc_class: str, query: dict[str, Any] | None = None
    ) -> list[Document]: ...

    async def find_one(
        self, doc_class: str, query: dict[str, Any] | None = None
    ) -> Document | None: ...

    async def has_mixin(self, doc_id: str, mixin: str) -> bool: ...

    async def get_mixin(
        self, doc_id: str, mixin: str
    ) -> dict[str, Any] | None: ...

    def apply(self, label: str) -> Transaction: ...
