"""Tests for sync report formatting."""

import json

from crm_sync.sync.models import (
    Document,
    MergeStats,
    RecordOutcome,
    RecordResult,
    SyncReport,
)
from crm_sync.sync.reporter import format_sync_report, report_to_json


def _report(**overrides) -> SyncReport:
    values = {
        "mapping_type": "crm.lead",
        "started_at": "2026-01-01T00:00:00+00:00",
        "completed_at": "2026-01-01T00:01:00+00:00",
        "results": [
            RecordResult(
                remote_id="1",
                outcome=RecordOutcome.SYNCED,
                document_id="d1",
                stats=MergeStats(created=3, uploaded=1),
            ),
            RecordResult(
                remote_id="2",
                outcome=RecordOutcome.SYNCED,
                document_id="d2",
                stats=MergeStats(updated=1, removed=2, refreshed=1, attachment_errors=1),
            ),
            RecordResult(remote_id="3", outcome=RecordOutcome.SKIPPED, document_id="d3"),
            RecordResult(remote_id="4", outcome=RecordOutcome.FAILED, error="boom"),
        ],
        "documents": [
            Document(id="d1", doc_class="crm:class:Lead", space="s"),
            Document(id="d2", doc_class="crm:class:Lead", space="s"),
        ],
    }
    values.update(overrides)
    return SyncReport(**values)


class TestFormatSyncReport:
    def test_summary_lines(self):
        text = format_sync_report(_report())

        assert "Sync report for 'crm.lead'" in text
        assert "Processed 4 records: 2 synced, 1 skipped, 1 failed" in text
        assert "Documents: 3 created, 1 updated, 2 removed; 1 attachments uploaded" in text
        assert "Attachment errors: 1" in text

    def test_failed_records_listed(self):
        text = format_sync_report(_report())
        assert "Failed:\n  4: boom" in text

    def test_clean_run_has_no_error_sections(self):
        report = _report(results=[], documents=[])
        text = format_sync_report(report)

        assert "Failed:" not in text
        assert "Attachment errors" not in text
        assert "Run aborted" not in text
        assert not text.endswith("\n")

    def test_aborted_run(self):
        text = format_sync_report(_report(error="QUERY_LIMIT_EXCEEDED"))
        assert text.endswith("Run aborted: QUERY_LIMIT_EXCEEDED")


class TestReportToJson:
    def test_structure(self):
        data = report_to_json(_report())

        assert data["mapping_type"] == "crm.lead"
        assert data["counts"] == {"total": 4, "synced": 2, "skipped": 1, "failed": 1}
        assert data["writes"]["created"] == 3
        assert data["writes"]["refreshed"] == 1
        assert data["documents"] == ["d1", "d2"]
        assert data["error"] is None

    def test_results_omit_empty_fields(self):
        results = report_to_json(_report())["results"]

        assert results[2] == {"remote_id": "3", "outcome": "skipped", "document_id": "d3"}
        assert results[3] == {"remote_id": "4", "outcome": "failed", "error": "boom"}
        assert results[0]["stats"]["uploaded"] == 1

    def test_json_serializable(self):
        json.dumps(report_to_json(_report()))
