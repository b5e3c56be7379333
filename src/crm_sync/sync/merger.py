"""Merge of one converted record into the document store.

``sync_document`` writes a ``ConvertResult`` graph inside a single store
transaction:

1. Create the primary document, or diff-update the previously synced one.
2. Create or diff-update the sync trait and any conversion mixins.
3. Create supplier documents (tag elements) unconditionally.
4. Reconcile attached collections (comments, tag references) by remote
   id: update matches, create the rest, delete synced orphans together
   with their attachments.
5. Reconcile attachments: skip ones already synced, match the rest by
   (name, size, type) before uploading anything.

Key design choices:

* **Null-safe diffing** -- ``diff_fields`` never emits ``None`` values and
  compares with ``!=``, so nested dicts and lists compare by value.
* **All or nothing** -- any error outside the per-attachment handler
  discards the transaction and propagates to the caller.
* **Attachment isolation** -- fetch and upload failures are logged and
  counted in ``MergeStats.attachment_errors``; the merge carries on.
* **Content-key matching** -- an attachment without a remote-id match takes
  over the stored record with the same (name, size, type) and its trait.
  Two pending attachments sharing a key therefore share one record whose
  trait names the last of them; the other is fetched again on every run.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from ..core.async_utils import run_sync
from ..store.base import DocumentStore, Transaction
from .models import (
    RECONCILED_COLLECTIONS,
    SYNC_TRAIT,
    BlobData,
    BlobDescriptor,
    ConvertResult,
    DocClass,
    Document,
    MergeStats,
    SyncedDocument,
    SyncTrait,
    get_sync_trait,
    now_ms,
)

logger = logging.getLogger(__name__)

TRANSACTION_LABEL = "crm-sync"


class Uploader(Protocol):
    def upload(self, blob: BlobData) -> str | None: ...


def diff_fields(current: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Fields of *incoming* that are set and differ from *current*."""
    return {
        key: value
        for key, value in incoming.items()
        if value is not None and current.get(key) != value
    }


def _attachment_key(doc: Document) -> tuple[Any, Any, Any]:
    return (doc.data.get("name"), doc.data.get("size"), doc.data.get("type"))


class _DocumentMerge:
    """State of one ``sync_document`` call."""

    def __init__(
        self,
        store: DocumentStore,
        tx: Transaction,
        result: ConvertResult,
        uploader: Uploader | None,
    ) -> None:
        self.store = store
        self.tx = tx
        self.result = result
        self.uploader = uploader
        self.stats = MergeStats()

    @property
    def primary(self) -> Document:
        return self.result.document.document

    # ------------------------------------------------------------------
    # Primary document and traits
    # ------------------------------------------------------------------

    async def merge_primary(self, existing: Document | None) -> None:
        doc = self.primary
        if existing is None:
            await self.tx.create_doc(
                doc.doc_class,
                doc.space,
                doc.data,
                doc.id,
                doc.modified_on,
                doc.modified_by,
            )
            self.stats.created += 1
            return

        doc.id = existing.id
        update = diff_fields(existing.data, doc.data)
        if update:
            await self.tx.update(existing, update)
            self.stats.updated += 1

    async def merge_mixins(self, is_new: bool) -> None:
        doc = self.primary
        trait = self.result.document.trait.model_copy(update={"sync_time": now_ms()})
        mixins = dict(self.result.mixins)
        mixins[SYNC_TRAIT] = trait.as_data()

        for name, values in mixins.items():
            current = None if is_new else await self.store.get_mixin(doc.id, name)
            if current is None:
                await self.tx.create_mixin(doc.id, doc.doc_class, doc.space, name, values)
                continue

            update = diff_fields(current, values)
            if not update:
                continue
            await self.tx.update_mixin(doc.id, doc.doc_class, doc.space, name, update)
            if set(update) == {"sync_time"}:
                self.stats.refreshed += 1
            else:
                self.stats.updated += 1

    async def create_extra_docs(self) -> None:
        doc = self.primary
        for extra in self.result.extra_docs:
            await self.tx.create_doc(
                extra.doc_class,
                extra.space,
                extra.data,
                extra.id,
                doc.modified_on,
                doc.modified_by,
            )
            self.stats.created += 1

    # ------------------------------------------------------------------
    # Attached collections
    # ------------------------------------------------------------------

    async def _sync_trait_of(self, doc: Document) -> SyncTrait | None:
        return get_sync_trait(await self.store.get_mixin(doc.id, SYNC_TRAIT))

    async def _update_attached(
        self, stored: Document, trait: SyncTrait | None, pending: SyncedDocument
    ) -> None:
        changed = False
        update = diff_fields(stored.data, pending.document.data)
        if update:
            await self.tx.update(stored, update)
            stored.data.update(update)
            changed = True

        values = pending.trait.as_data()
        if trait is None:
            await self.tx.create_mixin(
                stored.id, stored.doc_class, stored.space, SYNC_TRAIT, values
            )
            changed = True
        else:
            trait_update = diff_fields(trait.as_data(), values)
            if trait_update:
                await self.tx.update_mixin(
                    stored.id, stored.doc_class, stored.space, SYNC_TRAIT, trait_update
                )
                changed = True

        if changed:
            self.stats.updated += 1

    async def _create_attached(self, doc: Document, trait: SyncTrait) -> None:
        await self.tx.add_collection(
            doc.doc_class,
            doc.space,
            doc.attached_to,
            doc.attached_to_class,
            doc.collection,
            doc.data,
            doc.id,
            doc.modified_on,
            doc.modified_by,
        )
        await self.tx.create_mixin(
            doc.id, doc.doc_class, doc.space, SYNC_TRAIT, trait.as_data()
        )
        self.stats.created += 1

    async def reconcile_collections(self) -> None:
        primary = self.primary
        by_class: dict[str, list[SyncedDocument]] = {}
        for item in self.result.extra_sync:
            by_class.setdefault(item.document.doc_class, []).append(item)

        for doc_class, items in by_class.items():
            kind = RECONCILED_COLLECTIONS.get(doc_class)
            if kind is None:
                logger.warning(
                    "Skipping %d pending %s documents: not an attached collection",
                    len(items),
                    doc_class,
                )
                continue

            pool = [
                (stored, await self._sync_trait_of(stored))
                for stored in await self.store.find_all(
                    doc_class,
                    {"attached_to": primary.id, "collection": kind.collection},
                )
            ]

            for item in items:
                item.document.attached_to = primary.id
                item.document.attached_to_class = primary.doc_class
                item.document.collection = kind.collection

                index = next(
                    (
                        i
                        for i, (_, trait) in enumerate(pool)
                        if trait is not None and trait.remote_id == item.remote_id
                    ),
                    None,
                )
                if index is None:
                    await self._create_attached(item.document, item.trait)
                    continue

                stored, trait = pool.pop(index)
                item.document.id = stored.id
                await self._update_attached(stored, trait, item)

            for stored, trait in pool:
                if trait is None:
                    continue
                logger.debug(
                    "Removing orphan %s %s (remote id %s)",
                    doc_class,
                    stored.id,
                    trait.remote_id,
                )
                await self.tx.remove(stored)
                self.stats.removed += 1
                await self._remove_attachments_of(stored)

    async def _remove_attachments_of(self, parent: Document) -> None:
        # Attachments are only ever looked up through a live owner.
        for attachment in await self.store.find_all(
            DocClass.ATTACHMENT.value, {"attached_to": parent.id}
        ):
            await self.tx.remove(attachment)
            self.stats.removed += 1

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def reconcile_attachments(self) -> None:
        if not self.result.blobs:
            return

        owners = [self.primary.id] + [item.document.id for item in self.result.extra_sync]
        pool = await self.store.find_all(
            DocClass.ATTACHMENT.value, {"attached_to": {"$in": owners}}
        )
        traits = {doc.id: await self._sync_trait_of(doc) for doc in pool}

        for blob in self.result.blobs:
            if any(
                trait is not None and trait.remote_id == blob.remote_id
                for trait in traits.values()
            ):
                continue
            try:
                await self._merge_blob(blob, pool, traits)
            except Exception:
                logger.warning(
                    "Attachment %s of record %s failed",
                    blob.remote_id,
                    self.result.remote_id,
                    exc_info=True,
                )
                self.stats.attachment_errors += 1

    async def _merge_blob(
        self,
        blob: BlobDescriptor,
        pool: list[Document],
        traits: dict[str, SyncTrait | None],
    ) -> None:
        data = await blob.fetch()
        if data is None:
            logger.warning("No content for attachment %s, skipping", blob.remote_id)
            return

        attachment = blob.attachment
        blob.mutate(data, attachment)
        trait = SyncTrait(remote_type=blob.remote_type, remote_id=blob.remote_id)

        matches = [doc for doc in pool if _attachment_key(doc) == _attachment_key(attachment)]
        if matches:
            target, *duplicates = matches
            await self._update_attached(
                target, traits[target.id], SyncedDocument(document=attachment, trait=trait)
            )
            traits[target.id] = trait
            for duplicate in duplicates:
                await self.tx.remove(duplicate)
                pool.remove(duplicate)
                traits.pop(duplicate.id, None)
                self.stats.removed += 1
            return

        if self.uploader is None:
            raise RuntimeError("No blob uploader configured")
        ref = await run_sync(self.uploader.upload, data)
        if ref is None:
            raise RuntimeError(f"Upload of {data.name} was rejected")

        attachment.data["file"] = ref
        await self._create_attached(attachment, trait)
        self.stats.uploaded += 1
        pool.append(attachment)
        traits[attachment.id] = trait


async def sync_document(
    store: DocumentStore,
    existing: Document | None,
    result: ConvertResult,
    uploader: Uploader | None = None,
) -> MergeStats:
    """Merge *result* into *store* as one transaction.

    Args:
        store: Target document store.
        existing: Previously synced primary document, if any.  Its id is
            reused for the pending primary.
        result: Converted record graph.  Pending ids are rewritten in place
            to the stored identities they matched.
        uploader: Blob uploader for new attachments.

    Returns:
        Write counters for the merge.

    Raises:
        Exception: Anything raised outside attachment handling; the
            transaction is discarded first.
    """
    tx = store.apply(TRANSACTION_LABEL)
    merge = _DocumentMerge(store, tx, result, uploader)
    try:
        await merge.merge_primary(existing)
        await merge.merge_mixins(is_new=existing is None)
        await merge.create_extra_docs()
        await merge.reconcile_collections()
        await merge.reconcile_attachments()
        await tx.commit()
    except Exception:
        tx.discard()
        raise

    logger.debug(
        "Merged record %s: created=%d updated=%d removed=%d uploaded=%d",
        result.remote_id,
        merge.stats.created,
        merge.stats.updated,
        merge.stats.removed,
        merge.stats.uploaded,
    )
    return merge.stats
