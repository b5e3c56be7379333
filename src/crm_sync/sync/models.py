"""Data contracts for the CRM synchronization engine.

- ``Document`` / ``SyncTrait``: stored documents and their sync metadata.
- ``SyncedDocument``, ``BlobDescriptor``, ``ConvertResult``: the pending
  document graph produced by conversion and extended by the comment
  downloader, consumed by the merger.
- ``RecordOutcome``, ``RecordResult``, ``MergeStats``, ``SyncReport``:
  explicit per-record and per-run outcomes.

The pending graph classes are plain dataclasses: the merger mutates them
in place (identity hand-over, attachment back-fill), and descriptors hold
callables that must keep their closures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, NamedTuple

from pydantic import BaseModel

from ..config_schema import DEFAULT_SYNC_PERIOD_MS
from ..core.blobs import BlobData
from ..store.base import Document, generate_id, now_ms

__all__ = [
    "BlobData",
    "BlobDescriptor",
    "CONTACTS_SPACE",
    "CollectionKind",
    "ConvertResult",
    "DEFAULT_SYNC_PERIOD",
    "DocClass",
    "Document",
    "MODEL_SPACE",
    "MergeStats",
    "RECONCILED_COLLECTIONS",
    "RecordOutcome",
    "RecordResult",
    "SYNC_TRAIT",
    "SYSTEM_ACCOUNT",
    "SyncReport",
    "SyncTrait",
    "SyncedDocument",
    "generate_id",
    "get_sync_trait",
    "now_ms",
]

SYNC_TRAIT = "crm:mixin:SyncDoc"
SYSTEM_ACCOUNT = "core:account:System"
CONTACTS_SPACE = "contact:space:Contacts"
MODEL_SPACE = "core:space:Model"

DEFAULT_SYNC_PERIOD = DEFAULT_SYNC_PERIOD_MS


class DocClass(str, Enum):
    """Well-known target document classes."""

    EMPLOYEE = "contact:class:Employee"
    EMPLOYEE_ACCOUNT = "contact:class:EmployeeAccount"
    MEMBER = "contact:class:Member"
    COMMENT = "chunter:class:Comment"
    ATTACHMENT = "attachment:class:Attachment"
    TAG_ELEMENT = "tags:class:TagElement"
    TAG_REFERENCE = "tags:class:TagReference"
    TAG_CATEGORY = "tags:class:TagCategory"


class CollectionKind(NamedTuple):
    """A sub-document class reconciled inside one parent collection."""

    doc_class: str
    collection: str


RECONCILED_COLLECTIONS: dict[str, CollectionKind] = {
    DocClass.COMMENT.value: CollectionKind(DocClass.COMMENT.value, "comments"),
    DocClass.TAG_REFERENCE.value: CollectionKind(
        DocClass.TAG_REFERENCE.value, "labels"
    ),
}


class SyncTrait(BaseModel):
    """Sync metadata attached to every document this engine owns.

    Attributes:
        remote_type: Remote entity type (e.g. ``crm.lead``, ``email``).
        remote_id: Remote identifier; the sole matching key.
        raw_data: Snapshot of the raw remote payload.
        sync_time: Epoch milliseconds of the last sync; only set on
            primary documents.
    """

    remote_type: str
    remote_id: str
    raw_data: dict[str, Any] | None = None
    sync_time: int | None = None

    def as_data(self) -> dict[str, Any]:
        """Trait fields as stored, without unset sync time."""
        return self.model_dump(exclude_none=True)


def get_sync_trait(values: dict[str, Any] | None) -> SyncTrait | None:
    """Typed view of a stored trait, or ``None`` when absent."""
    if not values or "remote_id" not in values:
        return None
    return SyncTrait.model_validate(values)


@dataclass
class SyncedDocument:
    """A pending document paired with its sync trait."""

    document: Document
    trait: SyncTrait

    @property
    def remote_id(self) -> str:
        return self.trait.remote_id


@dataclass
class BlobDescriptor:
    """A pending binary attachment.

    ``attachment`` holds the attachment document to create (``name``,
    ``size``, ``type`` in its data, ``file`` filled on upload).  ``fetch``
    lazily downloads the bytes; ``mutate`` back-fills metadata from the
    fetched blob onto the attachment before matching.
    """

    attachment: Document
    remote_id: str
    fetch: Callable[[], Awaitable[BlobData | None]]
    mutate: Callable[[BlobData, Document], None]
    remote_type: str = "attachment"


@dataclass
class ConvertResult:
    """Pending document graph for one remote record."""

    document: SyncedDocument
    mixins: dict[str, dict[str, Any]] = field(default_factory=dict)
    extra_docs: list[Document] = field(default_factory=list)
    extra_sync: list[SyncedDocument] = field(default_factory=list)
    blobs: list[BlobDescriptor] = field(default_factory=list)

    @property
    def remote_id(self) -> str:
        return self.document.remote_id


class RecordOutcome(str, Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class MergeStats(BaseModel):
    """Write counters of one ``sync_document`` call.

    ``refreshed`` counts sync-time-only trait bumps; they keep the
    suppression window moving and are not content writes.
    """

    created: int = 0
    updated: int = 0
    removed: int = 0
    refreshed: int = 0
    uploaded: int = 0
    attachment_errors: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.updated + self.removed


class RecordResult(BaseModel):
    """Outcome of one remote record.

    Attributes:
        remote_id: Remote record id.
        outcome: What happened to the record this run.
        document_id: Local primary document id (when known).
        error: Error text for failed records.
        stats: Merge counters for synced records.
    """

    remote_id: str
    outcome: RecordOutcome
    document_id: str | None = None
    error: str | None = None
    stats: MergeStats | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one synchronization run.

    Attributes:
        mapping_type: Remote entity type that was synchronized.
        results: Per-record outcomes in processing order, including
            records of nested organization-contact runs.
        documents: Primary documents synced by the top-level run.
        started_at: ISO 8601 start time.
        completed_at: ISO 8601 completion time.
        error: Set when the run aborted early.
    """

    mapping_type: str
    results: list[RecordResult] = []
    documents: list[Document] = []
    started_at: str
    completed_at: str | None = None
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def synced(self) -> list[RecordResult]:
        return [r for r in self.results if r.outcome == RecordOutcome.SYNCED]

    @property
    def skipped(self) -> list[RecordResult]:
        return [r for r in self.results if r.outcome == RecordOutcome.SKIPPED]

    @property
    def failed(self) -> list[RecordResult]:
        return [r for r in self.results if r.outcome == RecordOutcome.FAILED]

