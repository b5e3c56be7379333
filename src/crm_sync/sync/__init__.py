"""Incremental CRM-to-document-store synchronization.

Modules:

- ``engine``   -- ``SyncEngine`` / ``perform_synchronization``: paging,
  re-sync suppression and per-record error handling.
- ``merger``   -- ``sync_document``: transactional merge of one record.
- ``comments`` -- timeline comment and activity download.
- ``users``    -- remote user directory reconciliation.
- ``mapper``   -- default record converter.
- ``models``   -- data contracts.
- ``reporter`` -- human-readable and JSON report formatting.

Usage example
-------------
::

    from crm_sync.config_schema import EntityMapping
    from crm_sync.core import BlobUploader, RemoteClient
    from crm_sync.store import JsonFileStore
    from crm_sync.sync import SyncEngine, SyncOptions, format_sync_report

    options = SyncOptions(
        store=JsonFileStore(".crm_sync/store.json"),
        client=RemoteClient(config),
        space="crm:space:Leads",
        mapping=EntityMapping(type="crm.lead", of_class="crm:class:Lead"),
        limit=50,
        uploader=BlobUploader(config.front_url, config.token),
    )
    report = await SyncEngine(options).run()
    print(format_sync_report(report))
"""

from .engine import SyncContext, SyncEngine, SyncOptions, perform_synchronization
from .merger import sync_document
from .models import (
    ConvertResult,
    MergeStats,
    RecordOutcome,
    RecordResult,
    SyncReport,
    SyncTrait,
)
from .reporter import format_sync_report, report_to_json

__all__ = [
    "ConvertResult",
    "MergeStats",
    "RecordOutcome",
    "RecordResult",
    "SyncContext",
    "SyncEngine",
    "SyncOptions",
    "SyncReport",
    "SyncTrait",
    "format_sync_report",
    "perform_synchronization",
    "report_to_json",
    "sync_document",
]
