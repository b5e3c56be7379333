"""In-memory document store.

``MemoryStore`` implements the ``DocumentStore`` protocol on plain dicts.
It backs the test-suite and is the base of ``JsonFileStore``.

Key design choices:

* **Staged commits** -- a transaction only records operations.  ``commit()``
  replays them against a deep copy of the current state and swaps the copy
  in when every operation succeeded, so a failing batch leaves no trace.
* **Trait side table** -- traits live in ``_mixins`` keyed by
  ``(doc_id, mixin)``; removing a document drops its traits too.
* **Copy on read** -- ``find_all`` returns deep copies, so callers can
  mutate results freely without touching stored state.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from .base import (
    Document,
    DocumentNotFoundError,
    DuplicateDocumentError,
    TransactionError,
    generate_id,
)

logger = logging.getLogger(__name__)

# Query keys resolved against Document attributes rather than ``data``.
_ATTRIBUTES = frozenset(
    {
        "id",
        "doc_class",
        "space",
        "attached_to",
        "attached_to_class",
        "collection",
        "modified_by",
        "modified_on",
    }
)


@dataclass
class _Operation:
    """One buffered write."""

    kind: str
    doc_id: str
    document: Document | None = None
    mixin: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class MemoryTransaction:
    """Buffered writes against a ``MemoryStore``.

    Args:
        store: The store the operations are committed to.
        label: Free-form label used in log messages.
    """

    def __init__(self, store: MemoryStore, label: str) -> None:
        self._store = store
        self.label = label
        self._operations: list[_Operation] = []
        self._closed = False

    @property
    def operation_count(self) -> int:
        """Number of writes recorded so far."""
        return len(self._operations)

    def _record(self, operation: _Operation) -> None:
        if self._closed:
            raise TransactionError(
                f"Transaction '{self.label}' is already closed"
            )
        self._operations.append(operation)

    async def create_doc(
        self,
        doc_class: str,
        space: str,
        data: dict[str, Any],
        doc_id: str | None = None,
        modified_on: int | None = None,
        modified_by: str | None = None,
    ) -> str:
        doc = Document(
            id=doc_id or generate_id(),
            doc_class=doc_class,
            space=space,
            data=copy.deepcopy(data),
            modified_on=modified_on,
            modified_by=modified_by,
        )
        self._record(_Operation("create", doc.id, document=doc))
        return doc.id

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
    ) -> str:
        doc = Document(
            id=doc_id or generate_id(),
            doc_class=doc_class,
            space=space,
            data=copy.deepcopy(data),
            attached_to=attached_to,
            attached_to_class=attached_to_class,
            collection=collection,
            modified_on=modified_on,
            modified_by=modified_by,
        )
        self._record(_Operation("create", doc.id, document=doc))
        return doc.id

    async def update(self, doc: Document, update: dict[str, Any]) -> None:
        self._record(
            _Operation("update", doc.id, payload=copy.deepcopy(update))
        )

    async def remove(self, doc: Document) -> None:
        self._record(_Operation("remove", doc.id))

    async def create_mixin(
        self,
        doc_id: str,
        doc_class: str,
        space: str,
        mixin: str,
        data: dict[str, Any],
    ) -> None:
        self._record(
            _Operation(
                "create_mixin",
                doc_id,
                mixin=mixin,
                payload=copy.deepcopy(data),
            )
        )

    async def update_mixin(
        self,
        doc_id: str,
        doc_class: str,
        space: str,
        mixin: str,
        update: dict[str, Any],
    ) -> None:
        self._record(
            _Operation(
                "update_mixin",
                doc_id,
                mixin=mixin,
                payload=copy.deepcopy(update),
            )
        )

    async def commit(self) -> None:
        """Apply every recorded write atomically."""
        if self._closed:
            raise TransactionError(
                f"Transaction '{self.label}' is already closed"
            )
        self._closed = True
        self._store._apply(self._operations)
        logger.debug(
            "Committed transaction '%s' (%d operations)",
            self.label,
            len(self._operations),
        )

    def discard(self) -> None:
        """Drop all recorded writes without applying them."""
        self._closed = True
        self._operations.clear()


class MemoryStore:
    """Dict-backed ``DocumentStore``.

    Writes issued directly on the store are committed immediately as
    single-operation transactions.
    """

    def __init__(self) -> None:
        self._docs: dict[str, Document] = {}
        self._mixins: dict[tuple[str, str], dict[str, Any]] = {}
        self.write_count = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_all(
        self, doc_class: str, query: dict[str, Any] | None = None
    ) -> list[Document]:
        query = query or {}
        return [
            doc.model_copy(deep=True)
            for doc in self._docs.values()
            if doc.doc_class == doc_class and self._matches(doc, query)
        ]

    async def find_one(
        self, doc_class: str, query: dict[str, Any] | None = None
    ) -> Document | None:
        found = await self.find_all(doc_class, query)
        return found[0] if found else None

    async def has_mixin(self, doc_id: str, mixin: str) -> bool:
        return (doc_id, mixin) in self._mixins

    async def get_mixin(
        self, doc_id: str, mixin: str
    ) -> dict[str, Any] | None:
        values = self._mixins.get((doc_id, mixin))
        return copy.deepcopy(values) if values is not None else None

    def _matches(self, doc: Document, query: dict[str, Any]) -> bool:
        for key, expected in query.items():
            value = self._lookup(doc, key)
            if isinstance(expected, dict) and "$in" in expected:
                if value not in expected["$in"]:
                    return False
            elif value != expected:
                return False
        return True

    def _lookup(self, doc: Document, key: str) -> Any:
        if key in _ATTRIBUTES:
            return getattr(doc, key)
        if "." in key:
            mixin, name = key.rsplit(".", 1)
            return self._mixins.get((doc.id, mixin), {}).get(name)
        return doc.data.get(key)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, label: str) -> MemoryTransaction:
        """Open a transaction; nothing is visible until it commits."""
        return MemoryTransaction(self, label)

    async def create_doc(
        self,
        doc_class: str,
        space: str,
        data: dict[str, Any],
        doc_id: str | None = None,
        modified_on: int | None = None,
        modified_by: str | None = None,
    ) -> str:
        tx = self.apply("direct")
        new_id = await tx.create_doc(
            doc_class, space, data, doc_id, modified_on, modified_by
        )
        await tx.commit()
        return new_id

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
    ) -> str:
        tx = self.apply("direct")
        new_id = await tx.add_collection(
            doc_class,
            space,
            attached_to,
            attached_to_class,
            collection,
            data,
            doc_id,
            modified_on,
            modified_by,
        )
        await tx.commit()
        return new_id

    async def update(self, doc: Document, update: dict[str, Any]) -> None:
        tx = self.apply("direct")
        await tx.update(doc, update)
        await tx.commit()

    async def remove(self, doc: Document) -> None:
        tx = self.apply("direct")
        await tx.remove(doc)
        await tx.commit()

    async def create_mixin(
        self,
        doc_id: str,
        doc_class: str,
        space: str,
        mixin: str,
        data: dict[str, Any],
    ) -> None:
        tx = self.apply("direct")
        await tx.create_mixin(doc_id, doc_class, space, mixin, data)
        await tx.commit()

    async def update_mixin(
        self,
        doc_id: str,
        doc_class: str,
        space: str,
        mixin: str,
        update: dict[str, Any],
    ) -> None:
        tx = self.apply("direct")
        await tx.update_mixin(doc_id, doc_class, space, mixin, update)
        await tx.commit()

    # ------------------------------------------------------------------
    # Commit machinery
    # ------------------------------------------------------------------

    def _apply(self, operations: list[_Operation]) -> None:
        """Replay *operations* on a staged copy, then swap it in."""
        docs, mixins = self._stage(operations)
        self._swap(docs, mixins, len(operations))

    def _stage(
        self, operations: list[_Operation]
    ) -> tuple[dict[str, Document], dict[tuple[str, str], dict[str, Any]]]:
        """Copy of the current state with *operations* applied."""
        docs = copy.deepcopy(self._docs)
        mixins = copy.deepcopy(self._mixins)

        for op in operations:
            match op.kind:
                case "create":
                    if op.doc_id in docs:
                        raise DuplicateDocumentError(
                            f"Document {op.doc_id} already exists"
                        )
                    docs[op.doc_id] = op.document.model_copy(deep=True)
                case "update":
                    target = docs.get(op.doc_id)
                    if target is None:
                        raise DocumentNotFoundError(
                            f"Cannot update missing document {op.doc_id}"
                        )
                    target.data.update(copy.deepcopy(op.payload))
                case "remove":
                    if docs.pop(op.doc_id, None) is None:
                        raise DocumentNotFoundError(
                            f"Cannot remove missing document {op.doc_id}"
                        )
                    for key in [k for k in mixins if k[0] == op.doc_id]:
                        del mixins[key]
                case "create_mixin" | "update_mixin":
                    if op.doc_id not in docs:
                        raise DocumentNotFoundError(
                            f"Cannot attach {op.mixin} to missing "
                            f"document {op.doc_id}"
                        )
                    values = mixins.setdefault((op.doc_id, op.mixin), {})
                    if op.kind == "create_mixin":
                        values.clear()
                    values.update(copy.deepcopy(op.payload))
                case _:
                    raise ValueError(f"Unknown operation: {op.kind}")

        return docs, mixins

    def _swap(
        self,
        docs: dict[str, Document],
        mixins: dict[tuple[str, str], dict[str, Any]],
        count: int,
    ) -> None:
        self._docs = docs
        self._mixins = mixins
        self.write_count += count
