"""Paginated synchronization of one entity mapping.

The ``SyncEngine`` drives a full run:

1. Fetches comment field keys and owner types, loads local accounts, tag
   elements and default tag categories, and reconciles remote users.
2. Pages through ``<mapping.type>.list`` ordered by ID.
3. Per record: skips it while its sync window is still open, otherwise
   converts it, downloads comments when enabled and merges the graph.
4. For organizations, syncs the organization's contacts and links them
   as members.
5. Builds and returns a ``SyncReport``.

Error handling is per record: a failing record is logged, followed by a
backoff sleep, and retried on the next run.  Anything escaping that ends
the run early with ``SyncReport.error`` set; committed records stay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from ..config_schema import CONTACT_TYPE, EntityMapping
from ..core.async_utils import run_sync
from ..core.client import RemoteClient
from ..store.base import DocumentStore
from .comments import COMMENT_ENTITY, BlobProvider, download_comments
from .mapper import Converter, convert_record
from .merger import Uploader, sync_document
from .models import (
    DEFAULT_SYNC_PERIOD,
    SYNC_TRAIT,
    DocClass,
    Document,
    RecordOutcome,
    RecordResult,
    SyncReport,
    SyncTrait,
    get_sync_trait,
    now_ms,
)
from .users import synchronize_users

logger = logging.getLogger(__name__)

SELECT_FIELDS = ["*", "UF_*", "EMAIL", "IM"]
CONTACT_PAGE_LIMIT = 100


@dataclass
class SyncOptions:
    """Inputs of one synchronization run.

    Attributes:
        store: Target document store.
        client: Remote CRM client.
        space: Target space; ``None`` makes the run a no-op.
        mapping: Entity mapping to synchronize.
        limit: Maximum number of records accepted (synced or skipped).
        direction: ``ASC`` or ``DESC`` remote ID order.
        uploader: Blob uploader for new attachments.
        monitor: Progress callback receiving the remote total.
        blob_provider: Async ``(url, file_id, name)`` attachment fetcher.
        extra_filter: Additional remote list filter.
        sync_period: Re-sync suppression window, a duration in milliseconds.
        all_mappings: Every configured mapping (organization runs look up
            the contact mapping here).
        converter: Record converter.
        error_backoff: Seconds to sleep after a failed record.
    """

    store: DocumentStore
    client: RemoteClient
    space: str | None
    mapping: EntityMapping
    limit: int
    direction: str = "ASC"
    uploader: Uploader | None = None
    monitor: Callable[[int], None] | None = None
    blob_provider: BlobProvider | None = None
    extra_filter: dict[str, Any] | None = None
    sync_period: int = DEFAULT_SYNC_PERIOD
    all_mappings: list[EntityMapping] = field(default_factory=list)
    converter: Converter = convert_record
    error_backoff: float = 1.0


@dataclass
class SyncContext:
    """Lookups shared by every record of one run, nested runs included."""

    owner_types: list[dict[str, Any]]
    comment_field_keys: list[str]
    accounts: list[Document]
    user_map: dict[str, str]
    tag_elements: list[Document]
    categories: list[Document]


class SyncEngine:
    """Run one synchronization of ``options.mapping``.

    Args:
        options: Run inputs.
    """

    def __init__(self, options: SyncOptions) -> None:
        self.options = options
        self.store = options.store
        self.client = options.client

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self) -> SyncReport:
        """Execute the run.

        Returns:
            A ``SyncReport`` with per-record outcomes and the synced
            primary documents.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        results: list[RecordResult] = []
        documents: list[Document] = []
        error: str | None = None

        try:
            if self.options.space is None:
                logger.warning("No target space configured, nothing to sync")
            else:
                context = await self._prepare()
                await self._sync_mapping(
                    mapping=self.options.mapping,
                    limit=self.options.limit,
                    extra_filter=self.options.extra_filter,
                    monitor=self.options.monitor,
                    context=context,
                    results=results,
                    documents=documents,
                )
        except Exception as exc:
            logger.exception(
                "Synchronization of %s aborted", self.options.mapping.type
            )
            error = str(exc)

        return SyncReport(
            mapping_type=self.options.mapping.type,
            results=results,
            documents=documents,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            error=error,
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _prepare(self) -> SyncContext:
        comment_fields = await run_sync(
            self.client.call, f"{COMMENT_ENTITY}.fields", {}
        )
        owner_types = await run_sync(self.client.call, "crm.enum.ownertype", {})

        accounts = await self.store.find_all(DocClass.EMPLOYEE_ACCOUNT.value)
        user_map = await synchronize_users(self.client, self.store, accounts)

        return SyncContext(
            owner_types=list(owner_types.result or []),
            comment_field_keys=list((comment_fields.result or {}).keys()),
            accounts=accounts,
            user_map=user_map,
            tag_elements=await self.store.find_all(DocClass.TAG_ELEMENT.value),
            categories=await self.store.find_all(
                DocClass.TAG_CATEGORY.value, {"default": True}
            ),
        )

    # ------------------------------------------------------------------
    # Paging loop
    # ------------------------------------------------------------------

    async def _existing_by_remote_id(
        self, mapping: EntityMapping, remote_ids: list[str]
    ) -> dict[str, tuple[Document, SyncTrait]]:
        found = await self.store.find_all(
            mapping.of_class, {f"{SYNC_TRAIT}.remote_id": {"$in": remote_ids}}
        )
        existing: dict[str, tuple[Document, SyncTrait]] = {}
        for doc in found:
            trait = get_sync_trait(await self.store.get_mixin(doc.id, SYNC_TRAIT))
            if trait is not None:
                existing.setdefault(trait.remote_id, (doc, trait))
        return existing

    async def _sync_mapping(
        self,
        mapping: EntityMapping,
        limit: int,
        extra_filter: dict[str, Any] | None,
        monitor: Callable[[int], None] | None,
        context: SyncContext,
        results: list[RecordResult],
        documents: list[Document],
    ) -> list[Document]:
        """Page through *mapping* until *limit* records are accepted.

        Synced primaries are appended to *documents*, which is also
        returned.
        """
        processed: int | None = 0
        added = 0

        while added < limit:
            query: dict[str, Any] = {
                "select": SELECT_FIELDS,
                "order": {"ID": self.options.direction},
                "start": processed,
            }
            if extra_filter is not None:
                query["filter"] = extra_filter

            page = await run_sync(self.client.call, f"{mapping.type}.list", query)
            records: list[dict[str, Any]] = list(page.result or [])
            total = page.total or 0
            sync_time = now_ms()
            existing = await self._existing_by_remote_id(
                mapping, [str(r["ID"]) for r in records]
            )
            logger.info(
                "%s: page at %s with %d records (accepted %d/%d)",
                mapping.type,
                processed,
                len(records),
                added,
                limit,
            )

            for record in records:
                remote_id = str(record["ID"])
                match = existing.get(remote_id)
                existing_doc = match[0] if match else None

                if (
                    match is not None
                    and match[1].sync_time is not None
                    and match[1].sync_time + self.options.sync_period > sync_time
                ):
                    added += 1
                    results.append(
                        RecordResult(
                            remote_id=remote_id,
                            outcome=RecordOutcome.SKIPPED,
                            document_id=existing_doc.id,
                        )
                    )
                    if monitor is not None:
                        monitor(total)
                    if added >= limit:
                        break
                    continue

                try:
                    document = await self._sync_record(
                        mapping, record, existing_doc, context, results
                    )
                except Exception as exc:
                    logger.warning(
                        "Failed to sync %s %s: %s",
                        mapping.type,
                        remote_id,
                        exc,
                        exc_info=True,
                        extra={"remote_type": mapping.type, "remote_id": remote_id},
                    )
                    results.append(
                        RecordResult(
                            remote_id=remote_id,
                            outcome=RecordOutcome.FAILED,
                            document_id=existing_doc.id if existing_doc else None,
                            error=str(exc),
                        )
                    )
                    await asyncio.sleep(self.options.error_backoff)
                    continue

                added += 1
                documents.append(document)
                # a repeated ID later in the page must match, not create
                existing[remote_id] = (
                    document,
                    SyncTrait(
                        remote_type=mapping.type,
                        remote_id=remote_id,
                        sync_time=now_ms(),
                    ),
                )
                if monitor is not None:
                    monitor(total)
                if added >= limit:
                    break

            processed = page.next
            if processed is None or not records:
                break

        return documents

    # ------------------------------------------------------------------
    # Single record
    # ------------------------------------------------------------------

    async def _sync_record(
        self,
        mapping: EntityMapping,
        record: dict[str, Any],
        existing: Document | None,
        context: SyncContext,
        results: list[RecordResult],
    ) -> Document:
        opts = self.options
        converted = await opts.converter(
            self.store,
            mapping,
            opts.space,
            list(mapping.fields),
            record,
            context.user_map,
            existing,
            context.categories,
            context.tag_elements,
            opts.blob_provider,
        )

        if mapping.comments:
            await download_comments(
                converted,
                self.client,
                mapping,
                opts.direction,
                context.comment_field_keys,
                context.user_map,
                context.owner_types,
                opts.blob_provider,
            )

        stats = await sync_document(self.store, existing, converted, opts.uploader)
        document = converted.document.document
        results.append(
            RecordResult(
                remote_id=converted.remote_id,
                outcome=RecordOutcome.SYNCED,
                document_id=document.id,
                stats=stats,
            )
        )

        for extra in converted.extra_docs:
            if extra.doc_class == DocClass.TAG_ELEMENT.value:
                context.tag_elements.append(extra)

        if mapping.is_organization:
            await self._sync_organization_contacts(
                document, converted.remote_id, context, results
            )

        return document

    async def _sync_organization_contacts(
        self,
        organization: Document,
        remote_id: str,
        context: SyncContext,
        results: list[RecordResult],
    ) -> None:
        contact_mapping = next(
            (m for m in self.options.all_mappings if m.type == CONTACT_TYPE), None
        )
        if contact_mapping is None:
            return

        contacts = await self._sync_mapping(
            mapping=contact_mapping,
            limit=CONTACT_PAGE_LIMIT,
            extra_filter={"COMPANY_ID": remote_id},
            monitor=lambda total: logger.debug(
                "Organization %s contacts: %d", remote_id, total
            ),
            context=context,
            results=results,
            documents=[],
        )
        if not contacts:
            return

        members = await self.store.find_all(
            DocClass.MEMBER.value,
            {
                "attached_to": organization.id,
                "contact": {"$in": [c.id for c in contacts]},
            },
        )
        linked = {m.data.get("contact") for m in members}
        for contact in contacts:
            if contact.id in linked:
                continue
            await self.store.add_collection(
                DocClass.MEMBER.value,
                organization.space,
                organization.id,
                organization.doc_class,
                "members",
                {"contact": contact.id},
            )
            linked.add(contact.id)


async def perform_synchronization(options: SyncOptions) -> list[Document]:
    """Run one synchronization and return the synced primary documents."""
    report = await SyncEngine(options).run()
    return report.documents
